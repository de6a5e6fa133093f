"""
exam_ai_core/api_throttler.py
-----------------------------------
Throttling and retry for calls to the hosted model APIs (OpenAI, Gemini).
Avoids HTTP 429 ("Too Many Requests") and rides out transient network errors.

✅ Highlights:
- Per-model or global minimum interval between calls
- Exponential backoff + jitter
- Honours the Retry-After header when present
- Separates transient (retryable) from permanent errors
- Thread-safe: composition workers share one throttler

This is the infrastructure retry layer. It is independent from the
composition controller's rejection counter: a call that still fails here
surfaces as ONE OracleUnavailableError, which the controller then counts
as ONE rejection.
"""

import time
import random
import logging
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple

from openai import OpenAI
from openai import RateLimitError, APIError, APITimeoutError, APIConnectionError
from google.genai import errors as genai_errors

# ==============================
# ⚙️ Logging
# ==============================
logger = logging.getLogger(__name__)


# ==============================
# 🧩 Custom exception
# ==============================
class ThrottlerError(Exception):
    """Raised when retries are exhausted or the API keeps failing."""

    def __init__(self, message: str, last_exception: Optional[BaseException], attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


# ==============================
# 🚀 ApiThrottler
# ==============================
class ApiThrottler:
    def __init__(
        self,
        min_interval: float = 2.0,
        max_retries: int = 5,
        max_wait: float = 30.0,
        per_model: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Parameters:
            min_interval: minimum seconds between two calls on the same key
            max_retries: maximum attempts per call
            max_wait: cap on a single backoff wait
            per_model: throttle per model (True) or globally (False)
            sleep: injectable for tests
        """
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1: {max_retries}")
        self.min_interval = min_interval
        self.max_retries = max_retries
        self.max_wait = max_wait
        self.per_model = per_model
        self._sleep = sleep

        self._lock = Lock()
        self._last_call: Dict[str, float] = {}

    # ------------------------------
    # 🔧 Time helpers
    # ------------------------------
    def _now(self) -> float:
        return time.monotonic()

    def _key(self, model: str) -> str:
        return model if self.per_model else "__global__"

    # ------------------------------
    # ⏳ Wait for a free slot (thread-safe)
    # ------------------------------
    def _wait_for_slot(self, key: str):
        with self._lock:
            now = self._now()
            last = self._last_call.get(key)
            if last is not None:
                elapsed = now - last
                if elapsed < self.min_interval:
                    wait = self.min_interval - elapsed
                    logger.debug(f"⏳ Waiting {wait:.2f}s to stay under the API rate ({key})")
                    self._lock.release()
                    try:
                        self._sleep(wait)
                    finally:
                        self._lock.acquire()
            self._last_call[key] = self._now()

    # ------------------------------
    # 🧠 Backoff
    # ------------------------------
    def _compute_backoff(self, attempt: int, retry_after: Optional[float]) -> float:
        if retry_after is not None:
            return min(self.max_wait, max(0.0, retry_after))
        return min(self.max_wait, 2 ** attempt + random.uniform(0.5, 2.0))

    # ------------------------------
    # 🔍 Error classification
    # ------------------------------
    def _classify(self, exc: BaseException) -> Tuple[bool, Optional[float], str]:
        """(retryable, retry_after, label)"""
        if isinstance(exc, RateLimitError):
            return True, self._get_retry_after(exc), "Rate limit (HTTP 429)"
        if isinstance(exc, (APITimeoutError, APIConnectionError)):
            return True, None, "Timeout/connection"
        if isinstance(exc, APIError):
            status = getattr(exc, "status_code", None)
            if status and 500 <= status < 600:
                return True, None, f"Server error ({status})"
            return False, None, f"API error ({status})"
        if isinstance(exc, genai_errors.ServerError):
            return True, None, f"Gemini server error ({exc.code})"
        if isinstance(exc, genai_errors.ClientError):
            if exc.code == 429:
                return True, None, "Gemini rate limit (HTTP 429)"
            return False, None, f"Gemini client error ({exc.code})"
        return False, None, "Unexpected error"

    # ------------------------------
    # 📥 Main entry: call safely
    # ------------------------------
    def call(self, fn: Callable[..., Any], *args, throttle_key: str = "default", **kwargs) -> Any:
        """
        Run fn(*args, **kwargs) with throttling + automatic retry.
        Returns fn's result, raises ThrottlerError after the last failed attempt.
        Non-retryable API errors are re-raised as they are.
        """
        key = self._key(throttle_key)
        last_exc: Optional[BaseException] = None
        attempts = 0

        for attempt in range(1, self.max_retries + 1):
            attempts = attempt
            self._wait_for_slot(key)
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                retryable, retry_after, label = self._classify(e)
                last_exc = e
                if not retryable:
                    if label == "Unexpected error":
                        logger.error(f"🚨 Unexpected error calling {throttle_key}: {e}")
                        break
                    logger.error(f"🚫 Non-retryable {label}: {e}")
                    raise
                if attempt == self.max_retries:
                    break
                wait_time = self._compute_backoff(attempt, retry_after)
                logger.warning(f"⚠️ {label}. Waiting {wait_time:.1f}s before retry ({attempt}/{self.max_retries})")
                self._sleep(wait_time)

        raise ThrottlerError(f"❌ API call failed after {attempts} attempt(s).", last_exc, attempts)

    def safe_openai_chat(
        self,
        client: OpenAI,
        messages: List[Dict[str, Any]],
        model: str = "gpt-4o-mini",
        **kwargs,
    ):
        return self.call(client.chat.completions.create, throttle_key=model, model=model, messages=messages, **kwargs)

    def safe_openai_embeddings(self, client: OpenAI, inputs: List[str], model: str = "text-embedding-3-small"):
        return self.call(client.embeddings.create, throttle_key=model, model=model, input=inputs)

    # ------------------------------
    # 🔍 Retry-After header
    # ------------------------------
    def _get_retry_after(self, exc: Exception) -> Optional[float]:
        response = getattr(exc, "response", None)
        headers = getattr(response, "headers", None)
        if not headers:
            return None
        val = headers.get("Retry-After")
        try:
            return float(val) if val else None
        except (TypeError, ValueError):
            return None
