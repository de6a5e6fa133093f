# tests/test_allocation_planner.py

import random

import pytest

from exam_core.allocation_planner import (
    AllocationPlanner,
    distribute_exact,
    largest_remainder,
    plan_exam,
    replace_slot,
)
from exam_core.errors import NoAlternativeSlotError, UnsatisfiableSpecError
from exam_core.schema import (
    ExamPlan,
    ExamSpecification,
    ModuleScore,
    PatternReport,
    PlanSlot,
    QuestionType,
)


def make_report(modules, type_dist=None, type_marks=None, mean=0.0):
    """modules: {name: (likelihood, average_marks)}"""
    scores = {
        name: ModuleScore(
            module=name,
            weighted_frequency=lk,
            last_seen_year=2023,
            overdue_bonus_applied=False,
            average_marks=avg,
            confidence=lk,
            predicted_likelihood=lk,
            base_frequency=lk,
            appearances=5,
        )
        for name, (lk, avg) in modules.items()
    }
    return PatternReport(
        module_scores=scores,
        type_distribution=type_dist if type_dist is not None else {QuestionType.SHORT: 100.0},
        mark_distribution={},
        current_year=2024,
        type_average_marks=type_marks or {},
        mean_question_marks=mean,
    )


# ============================
# Apportionment helpers
# ============================

def test_largest_remainder_exact_sum_and_ties():
    assert largest_remainder(5, {"b": 1.0, "a": 1.0}) == {"a": 3, "b": 2}
    assert largest_remainder(10, {"x": 0.8, "y": 0.2}) == {"x": 8, "y": 2}
    assert largest_remainder(3, {"x": 0.0, "y": 0.0, "z": 0.0}) == {"x": 1, "y": 1, "z": 1}
    assert largest_remainder(4, {}) == {}

    rng = random.Random(3)
    for _ in range(50):
        weights = {f"m{i}": rng.random() for i in range(rng.randint(1, 9))}
        total = rng.randint(0, 60)
        assert sum(largest_remainder(total, weights).values()) == total


def test_distribute_exact_respects_minimum():
    out = distribute_exact(10, [100.0, 1.0, 1.0])
    assert sum(out) == 10
    assert min(out) >= 1
    assert out == [8, 1, 1]

    assert distribute_exact(7, [0.0, 0.0]) in ([4, 3], [3, 4])
    assert distribute_exact(5, []) == []

    with pytest.raises(ValueError):
        distribute_exact(2, [1.0, 1.0, 1.0])


# ============================
# Planning
# ============================

def test_thermo_fluids_split():
    report = make_report({"Thermodynamics": (0.8, 10.0), "Fluid Mechanics": (0.2, 10.0)})
    spec = ExamSpecification(total_marks=50, duration_minutes=90, question_count=5)

    plan = plan_exam(report, spec)
    modules = [s.module for s in plan.slots]

    assert modules.count("Thermodynamics") == 4
    assert modules.count("Fluid Mechanics") == 1
    assert plan.total_target_marks() == 50
    assert [s.slot_id for s in plan.slots] == ["Q01", "Q02", "Q03", "Q04", "Q05"]
    assert all(s.target_marks == 10 for s in plan.slots)


def test_randomized_plans_sum_exactly():
    rng = random.Random(1234)
    all_types = list(QuestionType)

    for trial in range(100):
        names = [f"Module{i}" for i in range(rng.randint(1, 8))]
        modules = {n: (rng.uniform(0.05, 1.0), float(rng.randint(1, 20))) for n in names}
        type_dist = {t: float(rng.randint(1, 50)) for t in rng.sample(all_types, rng.randint(1, len(all_types)))}
        type_marks = {t: float(rng.randint(1, 20)) for t in type_dist}
        report = make_report(modules, type_dist, type_marks, mean=10.0)

        focus = frozenset(rng.sample(names, rng.randint(1, len(names)))) if rng.random() < 0.3 else frozenset()
        prefs = frozenset(rng.sample(all_types, rng.randint(1, 3))) if rng.random() < 0.3 else frozenset()
        spec = ExamSpecification(
            total_marks=100,
            duration_minutes=180,
            question_count=10,
            focus_modules=focus,
            question_type_preferences=prefs,
        )

        plan = AllocationPlanner(report).plan(spec)

        assert len(plan) == 10, f"trial {trial}: {len(plan)} slots"
        assert sum(s.target_marks for s in plan.slots) == 100, f"trial {trial}: marks do not sum to 100"
        assert all(s.target_marks >= 1 for s in plan.slots)
        if focus:
            assert {s.module for s in plan.slots} <= focus
        if prefs:
            assert {s.question_type for s in plan.slots} <= prefs


def test_type_mix_puts_large_types_on_large_slots():
    report = make_report(
        {"A": (1.0, 15.0), "B": (0.5, 5.0)},
        type_dist={QuestionType.SHORT: 60.0, QuestionType.LONG: 40.0},
        type_marks={QuestionType.SHORT: 5.0, QuestionType.LONG: 15.0},
    )
    spec = ExamSpecification(total_marks=100, duration_minutes=180, question_count=10)
    plan = AllocationPlanner(report).plan(spec)

    longs = [s for s in plan.slots if s.question_type == QuestionType.LONG]
    shorts = [s for s in plan.slots if s.question_type == QuestionType.SHORT]
    assert len(longs) == 4
    assert len(shorts) == 6
    assert min(s.target_marks for s in longs) >= max(s.target_marks for s in shorts)
    assert plan.total_target_marks() == 100


def test_unsatisfiable_specs():
    report = make_report({"A": (1.0, 5.0)})

    with pytest.raises(UnsatisfiableSpecError):
        plan_exam(report, ExamSpecification(total_marks=3, duration_minutes=60, question_count=5))

    with pytest.raises(UnsatisfiableSpecError):
        plan_exam(report, ExamSpecification(total_marks=20, duration_minutes=60, focus_modules={"Nope"}))

    with pytest.raises(UnsatisfiableSpecError):
        plan_exam(make_report({}), ExamSpecification(total_marks=20, duration_minutes=60, question_count=2))


def test_unknown_focus_modules_ignored():
    report = make_report({"A": (1.0, 5.0), "B": (0.9, 5.0)})
    spec = ExamSpecification(total_marks=20, duration_minutes=60, question_count=4, focus_modules={"A", "Nope"})
    plan = plan_exam(report, spec)
    assert {s.module for s in plan.slots} == {"A"}


def test_type_preferences_without_history_split_evenly():
    report = make_report({"A": (1.0, 5.0)})
    spec = ExamSpecification(
        total_marks=40,
        duration_minutes=60,
        question_count=4,
        question_type_preferences={"mcq", QuestionType.NUMERICAL},
    )
    plan = plan_exam(report, spec)
    types = [s.question_type for s in plan.slots]
    assert types.count(QuestionType.MCQ) == 2
    assert types.count(QuestionType.NUMERICAL) == 2


def test_derived_question_count():
    report = make_report({"A": (1.0, 10.0), "B": (0.5, 10.0)}, mean=10.0)
    plan = plan_exam(report, ExamSpecification(total_marks=50, duration_minutes=120))
    assert len(plan) == 5

    no_marks = make_report({"A": (1.0, 10.0)}, mean=0.0)
    planner = AllocationPlanner(no_marks)
    assert planner.question_count(ExamSpecification(total_marks=40, duration_minutes=90)) == 6
    assert planner.question_count(ExamSpecification(total_marks=3, duration_minutes=90)) == 3


# ============================
# Replacement
# ============================

def _replacement_fixture():
    report = make_report({"A": (1.0, 10.0), "C": (0.8, 30.0), "B": (0.6, 9.0)})
    plan = plan_exam(report, ExamSpecification(total_marks=10, duration_minutes=30, question_count=1))
    return report, plan


def test_replace_slot_preserves_marks():
    report, plan = _replacement_fixture()
    old = plan.get("Q01")
    assert old.module == "A"

    new = replace_slot(report, plan, "Q01")

    assert new.slot_id == old.slot_id
    assert new.index == old.index
    assert new.target_marks == old.target_marks == 10
    assert new.module == "B", "C averages 30 marks, outside the ±50% band"
    assert new.revision == old.revision + 1
    assert plan.get("Q01").module == "A", "replace_slot must not mutate the plan"

    plan.apply_replacement(new)
    assert plan.get("Q01").module == "B"
    assert plan.total_target_marks() == 10


def test_replace_slot_without_alternative():
    report, plan = _replacement_fixture()

    with pytest.raises(NoAlternativeSlotError) as exc:
        replace_slot(report, plan, "Q01", exclude_modules={"B"})
    assert exc.value.slot_id == "Q01"
    assert exc.value.target_marks == 10
    assert "A" in exc.value.excluded


def test_replace_slot_respects_focus():
    report = make_report({"A": (1.0, 10.0), "C": (0.8, 30.0), "B": (0.6, 9.0)})
    spec = ExamSpecification(total_marks=10, duration_minutes=30, question_count=1, focus_modules={"A", "C"})
    plan = plan_exam(report, spec)

    with pytest.raises(NoAlternativeSlotError):
        replace_slot(report, plan, "Q01")


# ============================
# ExamPlan
# ============================

def test_plan_rejects_wrong_total_and_mark_changes():
    spec = ExamSpecification(total_marks=10, duration_minutes=30)
    slot = PlanSlot(slot_id="Q01", module="A", question_type="SHORT", target_marks=10)

    with pytest.raises(ValueError):
        ExamPlan([PlanSlot(slot_id="Q01", module="A", question_type="SHORT", target_marks=9)], spec)

    plan = ExamPlan([slot], spec)
    with pytest.raises(ValueError):
        plan.apply_replacement(PlanSlot(slot_id="Q01", module="B", question_type="SHORT", target_marks=8))
    with pytest.raises(KeyError):
        plan.get("Q99")


def test_plan_checkpoint_dict():
    report = make_report({"A": (1.0, 10.0), "B": (0.5, 5.0)})
    plan = plan_exam(report, ExamSpecification(total_marks=30, duration_minutes=60, question_count=4))

    restored = ExamPlan.from_dict(plan.to_dict())
    assert restored.slots == plan.slots
    assert restored.spec == plan.spec
