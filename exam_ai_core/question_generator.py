import os
import json
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from openai import OpenAI, APIError

from exam_core.errors import OracleUnavailableError
from exam_core.schema import QuestionType
from exam_ai_core.api_throttler import ApiThrottler, ThrottlerError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"

TYPE_GUIDANCE: Dict[QuestionType, str] = {
    QuestionType.MCQ: "A multiple-choice question with exactly 4 options (A-D) and one correct option.",
    QuestionType.SHORT: "A short-answer question answerable in a few sentences.",
    QuestionType.LONG: "A long-answer / essay question that needs a structured, multi-part response.",
    QuestionType.NUMERICAL: "A numerical problem with concrete given values and a single numeric answer.",
    QuestionType.DERIVATION: "A derivation / proof question starting from stated principles.",
}


# ============ PROMPTS ============

def make_prompt(module: str, question_type: QuestionType, marks: int, style_examples: Sequence[str] = ()) -> str:
    examples = "\n".join(f"- {e}" for e in style_examples) or "- (none available)"
    return f"""
You are an experienced university examiner. Write ONE exam question.

REQUIREMENTS:
- Module: {module}
- Type: {question_type.value}. {TYPE_GUIDANCE[question_type]}
- Marks: {marks} (scope and depth must match the marks)
- Match the style of past questions from this institution
- No solution

PAST QUESTIONS (style only, do not copy):
{examples}

Return JSON:
{{
  "question": "Question text ...",
  "options": ["A ...", "B ...", "C ...", "D ..."]
}}
("options" only for MCQ)
""".strip()


def make_steps_prompt(question_text: str, module: str, question_type: QuestionType, marks: int) -> str:
    return f"""
You are an experienced examiner. Write a step-wise marking scheme.

QUESTION ({module}, {question_type.value}, {marks} marks):
{question_text}

REQUIREMENTS:
- Between 1 and {marks} steps
- Each step is a concrete point an examiner can award marks for
- Step marks must add up to exactly {marks}

Return JSON:
{{
  "steps": [{{"description": "Step ...", "marks": 1}}]
}}
""".strip()


# ============ PARSING ============

def _try_parse_json(text: str) -> Optional[Dict]:
    try:
        clean = text.strip().replace("```json", "").replace("```", "")
        return json.loads(clean)
    except (json.JSONDecodeError, AttributeError):
        fixed = text.replace("\n", " ").replace("“", "\"").replace("”", "\"")
        try:
            return json.loads(fixed)
        except json.JSONDecodeError:
            return None


def format_question(data: Optional[Dict]) -> Optional[str]:
    """Question text plus lettered options for MCQ payloads."""
    if not isinstance(data, dict):
        return None
    question = str(data.get("question", "")).strip()
    if not question:
        return None
    options = data.get("options") or []
    if options:
        lines = [question]
        for letter, opt in zip("ABCD", options):
            opt = str(opt).strip()
            lines.append(opt if opt[:2].rstrip(" .)") == letter else f"{letter}) {opt}")
        return "\n".join(lines)
    return question


def parse_steps(data: Optional[Dict]) -> List[Tuple[str, float]]:
    if not isinstance(data, dict) or not isinstance(data.get("steps"), list):
        return []
    steps = []
    for s in data["steps"]:
        if isinstance(s, dict) and str(s.get("description", "")).strip():
            try:
                weight = float(s.get("marks", 1))
            except (TypeError, ValueError):
                weight = 1.0
            steps.append((str(s["description"]).strip(), weight))
    return steps


# ============ ORACLE ============

class OpenAIQuestionGenerator:
    """GenerationOracle + StepOracle over the OpenAI chat API."""

    name = "openai-generation"

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        throttler: Optional[ApiThrottler] = None,
        temperature: float = 0.7,
        api_key: Optional[str] = None,
    ):
        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("❌ OPENAI_API_KEY is not configured")
            client = OpenAI(api_key=api_key)
        self.client = client
        self.model = model or os.getenv("OPENAI_MODEL", DEFAULT_MODEL)
        self.throttler = throttler or ApiThrottler(min_interval=2.0, max_retries=5, max_wait=25.0, per_model=True)
        self.temperature = temperature

    def _chat(self, system: str, prompt: str) -> str:
        try:
            response = self.throttler.safe_openai_chat(
                self.client,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                model=self.model,
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
        except ThrottlerError as e:
            logger.error(f"❌ OpenAI failed after {e.attempts} attempt(s): {e.last_exception}")
            raise OracleUnavailableError(self.name, "retries exhausted", e) from e
        except APIError as e:
            raise OracleUnavailableError(self.name, "API error", e) from e
        return (response.choices[0].message.content or "").strip()

    def generate(
        self,
        module: str,
        question_type: QuestionType,
        marks: int,
        style_examples: Sequence[str] = (),
    ) -> str:
        raw = self._chat(
            "You are an expert exam question writer.",
            make_prompt(module, QuestionType.parse(question_type), marks, style_examples),
        )
        text = format_question(_try_parse_json(raw))
        if not text:
            logger.warning("⚠️ Invalid JSON from generator, counting as unavailable.")
            raise OracleUnavailableError(self.name, "invalid response")
        return text

    def draft_steps(
        self,
        question_text: str,
        module: str,
        question_type: QuestionType,
        marks: int,
    ) -> List[Tuple[str, float]]:
        raw = self._chat(
            "You are an expert examiner writing marking schemes.",
            make_steps_prompt(question_text, module, QuestionType.parse(question_type), marks),
        )
        steps = parse_steps(_try_parse_json(raw))
        if not steps:
            raise OracleUnavailableError(self.name, "no marking steps in response")
        return steps
