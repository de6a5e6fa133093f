"""
exam_ai_core/exam_pipeline.py
-----------------------------------
History → analysis → plan → composition → marking schemes, in one call.
Each stage is the pure core; this module only wires collaborators together.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence, Tuple

from exam_core.allocation_planner import AllocationPlanner, PlannerConfig
from exam_core.composition_controller import ComposerConfig, CompositionController
from exam_core.marking_scheme import build_marking_schemes
from exam_core.oracles import AlignmentOracle, GenerationOracle, HistoryStore, StepOracle
from exam_core.pattern_analyzer import AnalyzerConfig, analyze
from exam_core.schema import ComposedExam, ExamPlan, ExamSpecification, MarkingScheme, PatternReport
from exam_ai_core.alignment_scorer import EmbeddingAlignmentScorer
from exam_ai_core.api_throttler import ApiThrottler
from exam_ai_core.gemini_generator import GeminiQuestionGenerator
from exam_ai_core.question_generator import OpenAIQuestionGenerator
from exam_ai_core.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExamBuild:
    report: PatternReport
    plan: ExamPlan
    exam: ComposedExam
    marking_schemes: Dict[str, MarkingScheme]


@dataclass(frozen=True)
class Oracles:
    generator: GenerationOracle
    aligner: AlignmentOracle
    step_oracle: StepOracle


def build_oracles(
    settings: Settings,
    curriculum: Mapping[str, Sequence[str]],
    provider: str = "openai",
) -> Oracles:
    """
    Adapters wired from Settings: one throttler per provider (EXAM_API_*),
    model names and keys from .env, embedding cache at EXAM_EMBEDDING_CACHE.
    Marking steps always come from OpenAI; provider only picks the question writer.
    """
    def throttler() -> ApiThrottler:
        return ApiThrottler(
            min_interval=settings.api_min_interval,
            max_retries=settings.api_max_retries,
            max_wait=settings.api_max_wait,
            per_model=True,
        )

    openai_gen = OpenAIQuestionGenerator(
        model=settings.openai_model,
        throttler=throttler(),
        api_key=settings.openai_api_key,
    )
    if provider == "openai":
        generator: GenerationOracle = openai_gen
    elif provider == "gemini":
        generator = GeminiQuestionGenerator(
            model=settings.gemini_model,
            throttler=throttler(),
            api_key=settings.google_api_key,
        )
    else:
        raise ValueError(f"Unknown generation provider: {provider!r}")

    aligner = EmbeddingAlignmentScorer(
        curriculum,
        model=settings.openai_embedding_model,
        throttler=throttler(),
        cache_path=settings.embedding_cache_path,
        api_key=settings.openai_api_key,
    )
    logger.info(f"🔌 Oracles ready: {provider} generation, {settings.openai_embedding_model} alignment")
    return Oracles(generator=generator, aligner=aligner, step_oracle=openai_gen)


def build_exam(
    store: HistoryStore,
    institution_id: str,
    course_code: str,
    spec: ExamSpecification,
    current_year: int,
    generator: GenerationOracle,
    aligner: AlignmentOracle,
    step_oracle: Optional[StepOracle] = None,
    *,
    year_range: Optional[Tuple[int, int]] = None,
    allow_insufficient: bool = False,
    analyzer_config: Optional[AnalyzerConfig] = None,
    planner_config: Optional[PlannerConfig] = None,
    composer_config: Optional[ComposerConfig] = None,
    exam_id: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> ExamBuild:
    """
    Run the whole pipeline for one exam request.

    Explicit configs win; otherwise they come from settings (if given),
    else the dataclass defaults.

    Errors from each stage propagate unchanged:
    InsufficientHistoryError, UnsatisfiableSpecError, ExamCompositionFailed,
    MarkingSchemeError. Nothing is retried here.
    """
    if settings is not None:
        analyzer_config = analyzer_config or settings.analyzer
        planner_config = planner_config or settings.planner
        composer_config = composer_config or settings.composer

    records = list(store.fetch(institution_id, course_code, year_range))
    logger.info(f"🚀 Building exam for {institution_id}/{course_code} from {len(records)} record(s)")

    report = analyze(records, current_year, analyzer_config, allow_insufficient=allow_insufficient)
    planner = AllocationPlanner(report, planner_config)
    plan = planner.plan(spec)

    controller = CompositionController(planner, generator, aligner, composer_config)
    exam = controller.compose(plan, exam_id=exam_id)

    schemes: Dict[str, MarkingScheme] = {}
    if step_oracle is not None:
        schemes = build_marking_schemes(exam, step_oracle, aligner, composer_config)

    return ExamBuild(report=report, plan=plan, exam=exam, marking_schemes=schemes)
