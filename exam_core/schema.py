# exam_core/schema.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple


# ============================
# Enum
# ============================

class QuestionType(str, Enum):
    MCQ = "MCQ"
    SHORT = "SHORT"
    LONG = "LONG"
    NUMERICAL = "NUMERICAL"
    DERIVATION = "DERIVATION"

    @classmethod
    def parse(cls, value) -> "QuestionType":
        """Accept enum members or case-insensitive names ("mcq", "Long")."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown question type: {value!r}") from None


class Trend(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    STABLE = "STABLE"


class SlotState(str, Enum):
    PENDING = "PENDING"
    GENERATING = "GENERATING"
    VALIDATING = "VALIDATING"
    ACCEPTED = "ACCEPTED"
    REJECTED_RETRY = "REJECTED_RETRY"
    REJECTED_EXHAUSTED = "REJECTED_EXHAUSTED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# ============================
# History & analysis
# ============================

@dataclass(frozen=True)
class HistoricalQuestion:
    """
    One question from a past paper, already classified.
    - source_document: part of the dedup key used by history stores
    - text: optional, used as style examples for the generator
    """
    module: str
    question_type: QuestionType
    marks: int
    year: int
    institution_id: str = ""
    course_code: str = ""
    source_document: str = ""
    text: str = ""

    def __post_init__(self) -> None:
        if not self.module:
            raise ValueError("module must be non-empty")
        object.__setattr__(self, "question_type", QuestionType.parse(self.question_type))
        if int(self.marks) <= 0:
            raise ValueError(f"marks must be positive: {self.marks}")

    @property
    def dedup_key(self) -> Tuple[str, str, int, int, str]:
        return (self.module, self.question_type.value, self.marks, self.year, self.source_document)


@dataclass(frozen=True)
class ModuleScore:
    module: str
    weighted_frequency: float          # after overdue adjustment
    last_seen_year: int
    overdue_bonus_applied: bool
    average_marks: float               # mean marks per question
    confidence: float                  # [0, 1]
    predicted_likelihood: float        # [0, 1]
    base_frequency: float = 0.0        # recency-weighted count before overdue adjustment
    overdue_multiplier: float = 1.0
    appearances: int = 0
    years_present: Tuple[int, ...] = ()


@dataclass(frozen=True)
class MarkDistributionEntry:
    module: str
    average_marks: float               # marks per year the module appeared
    trend: Trend


@dataclass(frozen=True)
class PatternReport:
    module_scores: Mapping[str, ModuleScore]
    type_distribution: Mapping[QuestionType, float]
    mark_distribution: Mapping[str, MarkDistributionEntry]
    current_year: int
    distinct_years: Tuple[int, ...] = ()
    total_records: int = 0
    reduced_confidence: bool = False
    type_average_marks: Mapping[QuestionType, float] = field(default_factory=dict)
    mean_question_marks: float = 0.0
    style_examples: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def ranked_modules(self) -> List[ModuleScore]:
        """Modules by predicted likelihood, highest first; ties by name."""
        return sorted(
            self.module_scores.values(),
            key=lambda s: (-s.predicted_likelihood, s.module),
        )

    def hot_topics(self, threshold: float = 0.5) -> List[str]:
        return [s.module for s in self.ranked_modules() if s.predicted_likelihood >= threshold]


# ============================
# Exam request & plan
# ============================

@dataclass(frozen=True)
class ExamSpecification:
    total_marks: int
    duration_minutes: int
    question_count: Optional[int] = None
    focus_modules: FrozenSet[str] = frozenset()
    question_type_preferences: FrozenSet[QuestionType] = frozenset()

    def __post_init__(self) -> None:
        if self.total_marks <= 0:
            raise ValueError(f"total_marks must be positive: {self.total_marks}")
        if self.duration_minutes <= 0:
            raise ValueError(f"duration_minutes must be positive: {self.duration_minutes}")
        if self.question_count is not None and self.question_count <= 0:
            raise ValueError(f"question_count must be positive: {self.question_count}")
        object.__setattr__(self, "focus_modules", frozenset(self.focus_modules))
        object.__setattr__(
            self,
            "question_type_preferences",
            frozenset(QuestionType.parse(t) for t in self.question_type_preferences),
        )

    def to_dict(self) -> Dict:
        return {
            "total_marks": self.total_marks,
            "duration_minutes": self.duration_minutes,
            "question_count": self.question_count,
            "focus_modules": sorted(self.focus_modules),
            "question_type_preferences": sorted(t.value for t in self.question_type_preferences),
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "ExamSpecification":
        return cls(
            total_marks=int(data["total_marks"]),
            duration_minutes=int(data["duration_minutes"]),
            question_count=data.get("question_count"),
            focus_modules=frozenset(data.get("focus_modules", ())),
            question_type_preferences=frozenset(data.get("question_type_preferences", ())),
        )


@dataclass(frozen=True)
class PlanSlot:
    slot_id: str
    module: str
    question_type: QuestionType
    target_marks: int
    index: int = 0          # creation order, used for final ordering
    revision: int = 0       # bumped by each replacement

    def __post_init__(self) -> None:
        object.__setattr__(self, "question_type", QuestionType.parse(self.question_type))
        if self.target_marks <= 0:
            raise ValueError(f"target_marks must be positive: {self.target_marks}")

    def to_dict(self) -> Dict:
        return {
            "slot_id": self.slot_id,
            "module": self.module,
            "question_type": self.question_type.value,
            "target_marks": self.target_marks,
            "index": self.index,
            "revision": self.revision,
        }


class ExamPlan:
    """
    Ordered list of slots for one exam request.

    Invariant: sum(target_marks) == spec.total_marks, always.
    Slots only change through apply_replacement(), which takes the lock
    and refuses to change target marks.
    """

    def __init__(self, slots: List[PlanSlot], spec: ExamSpecification, warnings: Optional[List[str]] = None):
        self._slots: List[PlanSlot] = list(slots)
        self.spec = spec
        self.warnings: List[str] = list(warnings or [])
        self._lock = threading.Lock()
        total = self.total_target_marks()
        if total != spec.total_marks:
            raise ValueError(f"Plan marks {total} != spec total {spec.total_marks}")
        ids = [s.slot_id for s in self._slots]
        if len(set(ids)) != len(ids):
            raise ValueError("Duplicate slot ids in plan")

    @property
    def slots(self) -> Tuple[PlanSlot, ...]:
        with self._lock:
            return tuple(self._slots)

    @property
    def total_marks(self) -> int:
        return self.spec.total_marks

    def __len__(self) -> int:
        return len(self._slots)

    def total_target_marks(self) -> int:
        return sum(s.target_marks for s in self._slots)

    def get(self, slot_id: str) -> PlanSlot:
        with self._lock:
            for s in self._slots:
                if s.slot_id == slot_id:
                    return s
        raise KeyError(slot_id)

    def apply_replacement(self, new_slot: PlanSlot) -> PlanSlot:
        """Swap the slot with the same id; returns the slot that was replaced."""
        with self._lock:
            for i, old in enumerate(self._slots):
                if old.slot_id != new_slot.slot_id:
                    continue
                if old.target_marks != new_slot.target_marks:
                    raise ValueError(
                        f"Replacement for {old.slot_id} changes marks "
                        f"{old.target_marks} -> {new_slot.target_marks}"
                    )
                self._slots[i] = new_slot
                return old
        raise KeyError(new_slot.slot_id)

    def to_dict(self) -> Dict:
        return {
            "spec": self.spec.to_dict(),
            "slots": [s.to_dict() for s in self.slots],
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "ExamPlan":
        return cls(
            slots=[PlanSlot(**s) for s in data["slots"]],
            spec=ExamSpecification.from_dict(data["spec"]),
            warnings=data.get("warnings", []),
        )


# ============================
# Composition
# ============================

@dataclass
class CandidateQuestion:
    slot_id: str
    text: str
    rejection_count: int = 0


@dataclass(frozen=True)
class RejectedQuestion:
    slot_id: str
    module: str
    question_type: QuestionType
    text: str
    score: Optional[float]        # None when the oracle never produced one
    reason: str                   # low_alignment | generation_failed | validation_failed | ...
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class AcceptedQuestion:
    slot_id: str
    module: str
    question_type: QuestionType
    marks: int
    text: str
    alignment_score: float


@dataclass(frozen=True)
class SlotOutcome:
    """Last known state of a slot, used in failure diagnostics."""
    slot_id: str
    module: str
    question_type: QuestionType
    marks: int
    state: SlotState
    rejection_count: int = 0
    replaced: bool = False
    last_score: Optional[float] = None


@dataclass(frozen=True)
class ComposedExam:
    exam_id: str
    slots: Tuple[AcceptedQuestion, ...]
    total_marks: int

    def to_dict(self) -> Dict:
        return {
            "exam_id": self.exam_id,
            "total_marks": self.total_marks,
            "slots": [
                {
                    "slot_id": q.slot_id,
                    "module": q.module,
                    "question_type": q.question_type.value,
                    "marks": q.marks,
                    "text": q.text,
                    "alignment_score": q.alignment_score,
                }
                for q in self.slots
            ],
        }


# ============================
# Marking scheme
# ============================

@dataclass(frozen=True)
class MarkingStep:
    description: str
    marks: int


@dataclass(frozen=True)
class MarkingScheme:
    slot_id: str
    steps: Tuple[MarkingStep, ...]
    total_marks: int
    alignment_score: float = 0.0

    def __post_init__(self) -> None:
        step_sum = sum(s.marks for s in self.steps)
        if step_sum != self.total_marks:
            raise ValueError(f"Marking steps sum to {step_sum}, expected {self.total_marks}")
