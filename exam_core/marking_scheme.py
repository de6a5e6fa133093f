# exam_core/marking_scheme.py

"""
Step-wise marking schemes for accepted questions.

Same generate/validate loop as the composition controller, but the only
numeric invariant is per question: step marks sum to the question's marks.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

from .allocation_planner import largest_remainder
from .composition_controller import ComposerConfig
from .errors import MarkingSchemeError
from .oracles import AlignmentOracle, StepOracle
from .schema import AcceptedQuestion, ComposedExam, MarkingScheme, MarkingStep

logger = logging.getLogger(__name__)


def apportion_steps(steps: Sequence[Tuple[str, float]], marks: int) -> Tuple[MarkingStep, ...]:
    """
    Give each (description, weight) step an integer share of marks.
    - at most `marks` steps are kept (highest weights, original order)
    - steps rounded down to 0 marks are dropped
    """
    cleaned: List[Tuple[str, float]] = [
        (str(d).strip(), max(0.0, float(w))) for d, w in steps if d and str(d).strip()
    ]
    if not cleaned:
        raise ValueError("No marking steps to apportion")
    if marks <= 0:
        raise ValueError(f"marks must be positive: {marks}")

    if len(cleaned) > marks:
        keep = sorted(range(len(cleaned)), key=lambda i: (-cleaned[i][1], i))[:marks]
        cleaned = [cleaned[i] for i in sorted(keep)]

    shares = largest_remainder(marks, {f"{i:04d}": w for i, (_, w) in enumerate(cleaned)})
    return tuple(
        MarkingStep(description=desc, marks=shares[f"{i:04d}"])
        for i, (desc, _) in enumerate(cleaned)
        if shares[f"{i:04d}"] > 0
    )


def build_marking_scheme(
    question: AcceptedQuestion,
    step_oracle: StepOracle,
    aligner: AlignmentOracle,
    config: Optional[ComposerConfig] = None,
) -> MarkingScheme:
    config = config or ComposerConfig()
    attempts = 0
    last_score: Optional[float] = None

    while attempts < config.max_retries:
        try:
            raw = step_oracle.draft_steps(question.text, question.module, question.question_type, question.marks)
            steps = apportion_steps(raw, question.marks)
        except Exception as e:
            attempts += 1
            logger.warning(f"⚠️ Marking steps for {question.slot_id} unusable ({attempts}/{config.max_retries}): {e}")
            continue

        try:
            score = aligner.score("\n".join(s.description for s in steps), question.module)
            score = None if score is None else float(score)
        except Exception as e:
            attempts += 1
            logger.warning(f"⚠️ Marking scheme validation failed for {question.slot_id} ({attempts}/{config.max_retries}): {e}")
            continue

        if score is None or math.isnan(score) or not (0.0 <= score <= 1.0):
            attempts += 1
            logger.warning(f"⚠️ Invalid alignment score {score!r} for {question.slot_id} marking scheme ({attempts}/{config.max_retries})")
            continue

        if score >= config.alignment_threshold:
            return MarkingScheme(
                slot_id=question.slot_id,
                steps=steps,
                total_marks=question.marks,
                alignment_score=score,
            )
        last_score = score
        attempts += 1
        logger.debug(f"Marking scheme for {question.slot_id} rejected, score={score:.2f}")

    raise MarkingSchemeError(question.slot_id, attempts, last_score)


def build_marking_schemes(
    exam: ComposedExam,
    step_oracle: StepOracle,
    aligner: AlignmentOracle,
    config: Optional[ComposerConfig] = None,
) -> Dict[str, MarkingScheme]:
    """One scheme per accepted question, keyed by slot id, in exam order."""
    schemes = {q.slot_id: build_marking_scheme(q, step_oracle, aligner, config) for q in exam.slots}
    logger.info(f"📝 Built {len(schemes)} marking scheme(s) for exam {exam.exam_id}")
    return schemes
