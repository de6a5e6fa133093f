# exam_core/__init__.py

"""
Core module for exam pattern analysis and composition.

Includes:
- PatternAnalyzer: recency-weighted module scores, overdue bonus, type/mark distributions
- AllocationPlanner: exact-sum, largest-remainder question plans and slot replacement
- CompositionController: bounded generate/validate/replace loop over external oracles
- Marking schemes whose steps sum to each question's marks

Common exports:
    HistoricalQuestion, PatternReport, ExamSpecification, ExamPlan, ComposedExam
    analyze, plan_exam, AllocationPlanner, CompositionController
"""

# Schema models
from .schema import (
    QuestionType,
    Trend,
    SlotState,
    HistoricalQuestion,
    ModuleScore,
    MarkDistributionEntry,
    PatternReport,
    ExamSpecification,
    PlanSlot,
    ExamPlan,
    CandidateQuestion,
    RejectedQuestion,
    AcceptedQuestion,
    SlotOutcome,
    ComposedExam,
    MarkingStep,
    MarkingScheme,
)

# Errors
from .errors import (
    ExamCoreError,
    InsufficientHistoryError,
    UnsatisfiableSpecError,
    NoAlternativeSlotError,
    OracleUnavailableError,
    ExamCompositionFailed,
    MarkingSchemeError,
)

# Collaborator interfaces
from .oracles import (
    HistoryStore,
    GenerationOracle,
    AlignmentOracle,
    StepOracle,
)

# Pattern analysis
from .pattern_analyzer import (
    AnalyzerConfig,
    analyze,
    overdue_multiplier,
    recency_weight,
)

# Planning
from .allocation_planner import (
    PlannerConfig,
    AllocationPlanner,
    largest_remainder,
    plan_exam,
    replace_slot,
)

# Composition
from .composition_controller import (
    ComposerConfig,
    CompositionController,
    RejectionLog,
    compose_exam,
)

# Marking schemes
from .marking_scheme import (
    apportion_steps,
    build_marking_scheme,
    build_marking_schemes,
)


__all__ = [
    # Schema
    "QuestionType",
    "Trend",
    "SlotState",
    "HistoricalQuestion",
    "ModuleScore",
    "MarkDistributionEntry",
    "PatternReport",
    "ExamSpecification",
    "PlanSlot",
    "ExamPlan",
    "CandidateQuestion",
    "RejectedQuestion",
    "AcceptedQuestion",
    "SlotOutcome",
    "ComposedExam",
    "MarkingStep",
    "MarkingScheme",

    # Errors
    "ExamCoreError",
    "InsufficientHistoryError",
    "UnsatisfiableSpecError",
    "NoAlternativeSlotError",
    "OracleUnavailableError",
    "ExamCompositionFailed",
    "MarkingSchemeError",

    # Interfaces
    "HistoryStore",
    "GenerationOracle",
    "AlignmentOracle",
    "StepOracle",

    # Analysis
    "AnalyzerConfig",
    "analyze",
    "overdue_multiplier",
    "recency_weight",

    # Planning
    "PlannerConfig",
    "AllocationPlanner",
    "largest_remainder",
    "plan_exam",
    "replace_slot",

    # Composition
    "ComposerConfig",
    "CompositionController",
    "RejectionLog",
    "compose_exam",

    # Marking schemes
    "apportion_steps",
    "build_marking_scheme",
    "build_marking_schemes",
]
