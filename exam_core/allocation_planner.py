# exam_core/allocation_planner.py

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Dict, Hashable, Iterable, List, Mapping, Optional, TypeVar

from .errors import NoAlternativeSlotError, UnsatisfiableSpecError
from .schema import (
    ExamPlan,
    ExamSpecification,
    ModuleScore,
    PatternReport,
    PlanSlot,
    QuestionType,
)

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)


# ============================
# Config
# ============================

@dataclass(frozen=True)
class PlannerConfig:
    """
    - replacement_mark_band: a replacement module must average within ±band of the slot marks
    - type_tolerance / mark_share_tolerance: soft targets, reported as plan warnings
    - minutes_per_question: fallback when the question count must be derived without history
    """
    replacement_mark_band: float = 0.5
    type_tolerance: float = 0.10
    mark_share_tolerance: float = 0.15
    minutes_per_question: int = 15

    def __post_init__(self) -> None:
        if self.replacement_mark_band < 0:
            raise ValueError(f"replacement_mark_band must be non-negative: {self.replacement_mark_band}")
        if self.type_tolerance < 0 or self.mark_share_tolerance < 0:
            raise ValueError("tolerances must be non-negative")
        if self.minutes_per_question <= 0:
            raise ValueError(f"minutes_per_question must be positive: {self.minutes_per_question}")


# ============================
# Apportionment
# ============================

def _name(key) -> str:
    return key.value if isinstance(key, QuestionType) else str(key)


def _safe_norm(weights: Mapping[K, float]) -> Dict[K, float]:
    """Normalize weights to sum 1. If the sum is 0, split evenly."""
    s = sum(max(0.0, v) for v in weights.values())
    if s <= 0:
        n = len(weights) or 1
        return {k: 1.0 / n for k in weights}
    return {k: max(0.0, v) / s for k, v in weights.items()}


def largest_remainder(total: int, weights: Mapping[K, float]) -> Dict[K, int]:
    """
    Split an integer total proportionally to weights, preserving the exact sum.
    Integer parts first, leftovers go to the largest fractional remainders;
    ties broken by key name so the result is deterministic.
    """
    if total < 0:
        raise ValueError(f"total must be non-negative: {total}")
    if not weights:
        return {}
    norm = _safe_norm(weights)
    exact = {k: total * norm[k] for k in norm}
    base = {k: int(math.floor(exact[k])) for k in norm}
    remain = total - sum(base.values())
    order = sorted(norm, key=lambda k: (-(exact[k] - base[k]), _name(k)))
    for i in range(remain):
        base[order[i % len(order)]] += 1
    return base


def distribute_exact(total: int, raw: List[float], minimum: int = 1) -> List[int]:
    """
    Scale raw values to integers summing exactly to total, each >= minimum.
    Proportional rounding first, then ±1 corrections on the largest rounding error.
    """
    n = len(raw)
    if n == 0:
        return []
    if total < n * minimum:
        raise ValueError(f"Cannot split {total} into {n} values of at least {minimum}")
    s = sum(max(0.0, r) for r in raw)
    if s <= 0:
        raw, s = [1.0] * n, float(n)
    exact = [max(0.0, r) * total / s for r in raw]
    rounded = [max(minimum, int(round(e))) for e in exact]

    diff = total - sum(rounded)
    while diff > 0:
        i = max(range(n), key=lambda j: (exact[j] - rounded[j], -j))
        rounded[i] += 1
        diff -= 1
    while diff < 0:
        i = max(
            (j for j in range(n) if rounded[j] > minimum),
            key=lambda j: (rounded[j] - exact[j], -j),
        )
        rounded[i] -= 1
        diff += 1
    return rounded


# ============================
# Planner
# ============================

class AllocationPlanner:
    """
    Turns a PatternReport + ExamSpecification into an exact-sum ExamPlan.

    Stateless apart from the (immutable) report and config, so one planner
    can serve several exam requests concurrently.
    """

    def __init__(self, report: PatternReport, config: Optional[PlannerConfig] = None):
        self.report = report
        self.config = config or PlannerConfig()

    # ---------- question count ----------

    def question_count(self, spec: ExamSpecification) -> int:
        if spec.question_count is not None:
            return spec.question_count
        if self.report.mean_question_marks > 0:
            derived = int(round(spec.total_marks / self.report.mean_question_marks))
        else:
            derived = spec.duration_minutes // self.config.minutes_per_question
        derived = max(1, min(spec.total_marks, derived))
        logger.info(f"🧮 Derived question count {derived} for {spec.total_marks} marks")
        return derived

    # ---------- module selection ----------

    def _working_modules(self, spec: ExamSpecification, question_count: int) -> List[ModuleScore]:
        ranked = self.report.ranked_modules()
        if not ranked:
            raise UnsatisfiableSpecError("No module history available to plan from")

        if spec.focus_modules:
            unknown = sorted(m for m in spec.focus_modules if m not in self.report.module_scores)
            if unknown:
                logger.warning(f"⚠️ Focus module(s) without history ignored: {', '.join(unknown)}")
            chosen = [s for s in ranked if s.module in spec.focus_modules]
            if not chosen:
                raise UnsatisfiableSpecError(
                    f"None of the focus modules has history: {', '.join(sorted(spec.focus_modules))}"
                )
            return chosen

        return ranked[: min(question_count, len(ranked))]

    # ---------- type mix ----------

    def _type_weights(self, spec: ExamSpecification) -> Dict[QuestionType, float]:
        allowed = spec.question_type_preferences or frozenset(QuestionType)
        dist = self.report.type_distribution
        weights = {t: dist[t] for t in allowed if dist.get(t, 0.0) > 0}
        if not weights:
            if spec.question_type_preferences:
                logger.warning("⚠️ Preferred types never seen in history; splitting them evenly.")
            weights = {t: 1.0 for t in allowed}
        return weights

    def _typical_marks(self, qtype: QuestionType) -> float:
        return self.report.type_average_marks.get(qtype, self.report.mean_question_marks)

    def _module_marks(self, module: str) -> float:
        score = self.report.module_scores.get(module)
        if score and score.average_marks > 0:
            return score.average_marks
        return self.report.mean_question_marks or 1.0

    # ---------- main ----------

    def plan(self, spec: ExamSpecification) -> ExamPlan:
        qc = self.question_count(spec)
        if spec.total_marks < qc:
            raise UnsatisfiableSpecError(
                f"{spec.total_marks} marks cannot be split into {qc} positive-integer slots"
            )

        modules = self._working_modules(spec, qc)
        weights = {s.module: s.predicted_likelihood for s in modules}
        counts = largest_remainder(qc, weights)

        # 1) Slot skeleton: descending module weight, then creation index
        skeleton: List[str] = []
        for s in modules:
            skeleton.extend([s.module] * counts[s.module])

        # 2) Marks proportional to module average marks, exact sum
        raw = [self._module_marks(m) for m in skeleton]
        marks = distribute_exact(spec.total_marks, raw)

        # 3) Types: largest-mark types onto largest-mark slots
        type_weights = self._type_weights(spec)
        type_counts = largest_remainder(qc, type_weights)
        type_seq: List[QuestionType] = []
        for t in sorted(type_counts, key=lambda t: (-self._typical_marks(t), t.value)):
            type_seq.extend([t] * type_counts[t])
        by_size = sorted(range(qc), key=lambda i: (-raw[i], i))
        types: Dict[int, QuestionType] = {i: type_seq[rank] for rank, i in enumerate(by_size)}

        slots = [
            PlanSlot(
                slot_id=f"Q{i + 1:02d}",
                module=skeleton[i],
                question_type=types[i],
                target_marks=marks[i],
                index=i,
            )
            for i in range(qc)
        ]
        assert sum(s.target_marks for s in slots) == spec.total_marks

        warnings = self._tolerance_warnings(slots, modules, type_weights)
        for w in warnings:
            logger.warning(f"⚠️ {w}")

        plan = ExamPlan(slots, spec, warnings)
        logger.info(
            f"🗂️ Planned {qc} slot(s) over {sum(1 for c in counts.values() if c)} module(s), "
            f"{spec.total_marks} marks"
        )
        return plan

    def _tolerance_warnings(
        self,
        slots: List[PlanSlot],
        modules: List[ModuleScore],
        type_weights: Mapping[QuestionType, float],
    ) -> List[str]:
        """Soft objectives: reported, never enforced against the exact mark total."""
        out: List[str] = []
        n = len(slots)
        total = sum(s.target_marks for s in slots)

        target_types = _safe_norm(type_weights)
        for t, share in sorted(target_types.items(), key=lambda kv: kv[0].value):
            planned = sum(1 for s in slots if s.question_type == t) / n
            if abs(planned - share) > self.config.type_tolerance:
                out.append(f"Type {t.value} share {planned:.0%} vs history {share:.0%}")

        history_marks = _safe_norm({m.module: m.average_marks * m.appearances for m in modules})
        for module, share in sorted(history_marks.items()):
            planned = sum(s.target_marks for s in slots if s.module == module) / total
            if abs(planned - share) > self.config.mark_share_tolerance:
                out.append(f"Module {module} mark share {planned:.0%} vs history {share:.0%}")
        return out

    # ---------- replacement ----------

    def replace_slot(self, plan: ExamPlan, slot_id: str, exclude_modules: Iterable[str] = ()) -> PlanSlot:
        """
        New slot with the same id, index and target marks, drawn from the
        next-best module not excluded. The slot's current module is always
        excluded. Does not mutate the plan; see ExamPlan.apply_replacement().
        """
        slot = plan.get(slot_id)
        excluded = set(exclude_modules) | {slot.module}
        target = slot.target_marks
        band = self.config.replacement_mark_band * target

        pool = self.report.ranked_modules()
        if plan.spec.focus_modules:
            pool = [s for s in pool if s.module in plan.spec.focus_modules]

        for score in pool:
            if score.module in excluded:
                continue
            if abs(score.average_marks - target) <= band:
                qtype = self._best_type_for_marks(target, plan.spec)
                new_slot = replace(
                    slot,
                    module=score.module,
                    question_type=qtype,
                    revision=slot.revision + 1,
                )
                logger.info(
                    f"🔁 Slot {slot_id}: {slot.module}/{slot.question_type.value} -> "
                    f"{new_slot.module}/{qtype.value} ({target} marks)"
                )
                return new_slot

        raise NoAlternativeSlotError(slot_id, target, excluded)

    def _best_type_for_marks(self, target: int, spec: ExamSpecification) -> QuestionType:
        weights = self._type_weights(spec)
        return min(
            weights,
            key=lambda t: (abs(self._typical_marks(t) - target), -weights[t], t.value),
        )


# ============================
# Functional API
# ============================

def plan_exam(
    report: PatternReport,
    spec: ExamSpecification,
    config: Optional[PlannerConfig] = None,
) -> ExamPlan:
    return AllocationPlanner(report, config).plan(spec)


def replace_slot(
    report: PatternReport,
    plan: ExamPlan,
    slot_id: str,
    exclude_modules: Iterable[str] = (),
    config: Optional[PlannerConfig] = None,
) -> PlanSlot:
    return AllocationPlanner(report, config).replace_slot(plan, slot_id, exclude_modules)
