# exam_core/oracles.py

"""
Capability interfaces for the external collaborators.

The core only ever talks to these protocols, so every adapter
(OpenAI, Gemini, embeddings, JSON files) and every test fake
is interchangeable.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from .schema import HistoricalQuestion, QuestionType


@runtime_checkable
class HistoryStore(Protocol):
    def fetch(
        self,
        institution_id: str,
        course_code: str,
        year_range: Optional[Tuple[int, int]] = None,
    ) -> Iterable[HistoricalQuestion]:
        """Records for one course, already deduplicated by HistoricalQuestion.dedup_key."""
        ...


@runtime_checkable
class GenerationOracle(Protocol):
    def generate(
        self,
        module: str,
        question_type: QuestionType,
        marks: int,
        style_examples: Sequence[str] = (),
    ) -> str:
        ...


@runtime_checkable
class AlignmentOracle(Protocol):
    def score(self, text: str, module: str) -> float:
        """Similarity against curriculum content, in [0, 1]."""
        ...


@runtime_checkable
class StepOracle(Protocol):
    def draft_steps(
        self,
        question_text: str,
        module: str,
        question_type: QuestionType,
        marks: int,
    ) -> List[Tuple[str, float]]:
        """Marking steps as (description, relative weight) pairs."""
        ...
