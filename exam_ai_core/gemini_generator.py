import os
import logging
from typing import Optional, Sequence

from google import genai
from google.genai import errors as genai_errors

from exam_core.errors import OracleUnavailableError
from exam_core.schema import QuestionType
from exam_ai_core.api_throttler import ApiThrottler, ThrottlerError
from exam_ai_core.question_generator import format_question, make_prompt, _try_parse_json

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"


class GeminiQuestionGenerator:
    """GenerationOracle over Google GenAI (Gemini)."""

    name = "gemini-generation"

    def __init__(
        self,
        client: Optional[genai.Client] = None,
        model: Optional[str] = None,
        throttler: Optional[ApiThrottler] = None,
        api_key: Optional[str] = None,
    ):
        if client is None:
            api_key = api_key or os.getenv("GOOGLE_API_KEY")
            if not api_key:
                raise ValueError("❌ GOOGLE_API_KEY is not configured")
            client = genai.Client(api_key=api_key)
        self.client = client
        self.model = model or os.getenv("GEMINI_MODEL", DEFAULT_MODEL)
        self.throttler = throttler or ApiThrottler(min_interval=2.0, max_retries=5, max_wait=25.0, per_model=True)

    def generate(
        self,
        module: str,
        question_type: QuestionType,
        marks: int,
        style_examples: Sequence[str] = (),
    ) -> str:
        prompt = make_prompt(module, QuestionType.parse(question_type), marks, style_examples)
        try:
            response = self.throttler.call(
                self.client.models.generate_content,
                throttle_key=self.model,
                model=self.model,
                contents=prompt,
            )
        except ThrottlerError as e:
            logger.error(f"❌ Gemini failed after {e.attempts} attempt(s): {e.last_exception}")
            raise OracleUnavailableError(self.name, "retries exhausted", e) from e
        except genai_errors.APIError as e:
            raise OracleUnavailableError(self.name, "API error", e) from e

        text = format_question(_try_parse_json(response.text or ""))
        if not text:
            logger.warning("⚠️ Invalid JSON from Gemini, counting as unavailable.")
            raise OracleUnavailableError(self.name, "invalid response")
        return text
