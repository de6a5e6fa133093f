# exam_core/errors.py

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .schema import RejectedQuestion, SlotOutcome


class ExamCoreError(Exception):
    """Base class for every error raised by the analysis/planning/composition core."""


class InsufficientHistoryError(ExamCoreError):
    """Fewer distinct exam years than the analyzer needs. Recoverable: caller may opt in."""

    def __init__(self, distinct_years: int, minimum: int):
        super().__init__(
            f"Only {distinct_years} distinct year(s) of history, need at least {minimum}. "
            "Pass allow_insufficient=True to proceed with reduced confidence."
        )
        self.distinct_years = distinct_years
        self.minimum = minimum


class UnsatisfiableSpecError(ExamCoreError):
    """The exam specification cannot be planned. Caller input error, never retried."""


class NoAlternativeSlotError(ExamCoreError):
    """No module left that can plausibly carry a slot's mark value."""

    def __init__(self, slot_id: str, target_marks: int, excluded: Iterable[str] = ()):
        excluded = sorted(excluded)
        super().__init__(
            f"No alternative module for slot {slot_id} ({target_marks} marks); "
            f"excluded: {', '.join(excluded) or '-'}"
        )
        self.slot_id = slot_id
        self.target_marks = target_marks
        self.excluded = excluded


class OracleUnavailableError(ExamCoreError):
    """An external oracle failed or timed out. Counted as a rejection by the controller."""

    def __init__(self, oracle: str, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(f"{oracle} unavailable" + (f": {message}" if message else ""))
        self.oracle = oracle
        self.cause = cause


class ExamCompositionFailed(ExamCoreError):
    """
    Terminal, exam-level failure. Generation is all-or-nothing per exam.

    Carries:
        failed_slot_ids: slots that ended in a terminal failure
        outcomes: last known state of every slot in the plan
        rejections: full rejection log of the run
    """

    def __init__(
        self,
        failed_slot_ids: Sequence[str],
        outcomes: Mapping[str, SlotOutcome],
        rejections: Sequence[RejectedQuestion] = (),
        message: Optional[str] = None,
    ):
        self.failed_slot_ids = list(failed_slot_ids)
        self.outcomes: Dict[str, SlotOutcome] = dict(outcomes)
        self.rejections: List[RejectedQuestion] = list(rejections)
        super().__init__(message or self.summary())

    def summary(self) -> str:
        """User-facing explanation: which module/type failed and its rejection history."""
        by_slot: Dict[str, List[RejectedQuestion]] = defaultdict(list)
        for r in self.rejections:
            by_slot[r.slot_id].append(r)

        lines = [f"Exam composition failed for {len(self.failed_slot_ids)} slot(s):"]
        for slot_id in self.failed_slot_ids:
            out = self.outcomes.get(slot_id)
            if out is not None:
                lines.append(
                    f"- {slot_id}: {out.module} / {out.question_type.value} "
                    f"({out.marks} marks), {out.rejection_count} rejection(s)"
                    + (" after replacement" if out.replaced else "")
                )
            else:
                lines.append(f"- {slot_id}")
            for r in by_slot.get(slot_id, []):
                score = "n/a" if r.score is None else f"{r.score:.2f}"
                lines.append(f"    {r.module} / {r.question_type.value}: {r.reason} (score {score})")
        return "\n".join(lines)


class MarkingSchemeError(ExamCoreError):
    """No acceptable marking scheme for an accepted question within the retry bound."""

    def __init__(self, slot_id: str, attempts: int, last_score: Optional[float] = None):
        super().__init__(
            f"Marking scheme for slot {slot_id} rejected {attempts} time(s)"
            + ("" if last_score is None else f" (last score {last_score:.2f})")
        )
        self.slot_id = slot_id
        self.attempts = attempts
        self.last_score = last_score
