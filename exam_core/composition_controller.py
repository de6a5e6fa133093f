# exam_core/composition_controller.py

from __future__ import annotations

import logging
import math
import threading
import uuid
from concurrent.futures import CancelledError, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from tqdm import tqdm

from .allocation_planner import AllocationPlanner
from .errors import ExamCompositionFailed, NoAlternativeSlotError
from .oracles import AlignmentOracle, GenerationOracle
from .schema import (
    AcceptedQuestion,
    CandidateQuestion,
    ComposedExam,
    ExamPlan,
    PlanSlot,
    RejectedQuestion,
    SlotOutcome,
    SlotState,
)

logger = logging.getLogger(__name__)


# ============================
# Config
# ============================

@dataclass(frozen=True)
class ComposerConfig:
    """
    - alignment_threshold: minimum score to accept (inclusive)
    - max_retries: rejections per slot before it is exhausted
    - max_workers: slots processed concurrently
    - validation_timeout: seconds to wait for the alignment oracle (None waits indefinitely)
    """
    alignment_threshold: float = 0.75
    max_retries: int = 5
    max_workers: int = 4
    validation_timeout: Optional[float] = 60.0
    show_progress: bool = False
    style_example_limit: int = 3

    def __post_init__(self) -> None:
        if not (0.0 <= self.alignment_threshold <= 1.0):
            raise ValueError(f"alignment_threshold must be in [0, 1]: {self.alignment_threshold}")
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1: {self.max_retries}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1: {self.max_workers}")
        if self.validation_timeout is not None and self.validation_timeout <= 0:
            raise ValueError(f"validation_timeout must be positive: {self.validation_timeout}")


# ============================
# Per-exam state
# ============================

class RejectionLog:
    """Append-only, safe for concurrent append from slot workers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: List[RejectedQuestion] = []

    def append(self, entry: RejectedQuestion) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self) -> List[RejectedQuestion]:
        with self._lock:
            return list(self._entries)

    def for_slot(self, slot_id: str) -> List[RejectedQuestion]:
        return [e for e in self.entries() if e.slot_id == slot_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class _SlotFailed(Exception):
    def __init__(self, slot_id: str):
        super().__init__(slot_id)
        self.slot_id = slot_id


class _Cancelled(Exception):
    pass


class _CompositionRun:
    """Everything one compose() call owns. Never shared between exams."""

    def __init__(self, plan: ExamPlan):
        self.plan = plan
        self.log = RejectionLog()
        self.cancel = threading.Event()
        self._lock = threading.Lock()
        self._outcomes: Dict[str, SlotOutcome] = {
            s.slot_id: SlotOutcome(
                slot_id=s.slot_id,
                module=s.module,
                question_type=s.question_type,
                marks=s.target_marks,
                state=SlotState.PENDING,
            )
            for s in plan.slots
        }

    def update(
        self,
        slot: PlanSlot,
        state: SlotState,
        rejection_count: int = 0,
        replaced: bool = False,
        last_score: Optional[float] = None,
    ) -> None:
        with self._lock:
            self._outcomes[slot.slot_id] = SlotOutcome(
                slot_id=slot.slot_id,
                module=slot.module,
                question_type=slot.question_type,
                marks=slot.target_marks,
                state=state,
                rejection_count=rejection_count,
                replaced=replaced,
                last_score=last_score,
            )

    def mark_cancelled(self, slot_id: str) -> None:
        with self._lock:
            out = self._outcomes[slot_id]
            if out.state not in (SlotState.ACCEPTED, SlotState.FAILED):
                self._outcomes[slot_id] = replace(out, state=SlotState.CANCELLED)

    def snapshot(self) -> Dict[str, SlotOutcome]:
        with self._lock:
            return dict(self._outcomes)


# ============================
# Controller
# ============================

class CompositionController:
    """
    Drives generate -> validate -> accept / retry / replace for every slot.

    Per slot:
        Pending -> Generating -> Validating -> Accepted
                                            -> RejectedRetry (back to Generating)
                                            -> RejectedExhausted -> one replace_slot()
                                                -> Pending (new module/type, same marks)
                                                -> Failed (exam-level failure)

    A failed slot cancels the rest of the exam: a partial exam would have
    the wrong mark total.
    """

    def __init__(
        self,
        planner: AllocationPlanner,
        generator: GenerationOracle,
        aligner: AlignmentOracle,
        config: Optional[ComposerConfig] = None,
        style_examples: Optional[Mapping[str, Sequence[str]]] = None,
    ):
        self.planner = planner
        self.generator = generator
        self.aligner = aligner
        self.config = config or ComposerConfig()
        if style_examples is None:
            report = getattr(planner, "report", None)
            style_examples = report.style_examples if report is not None else {}
        self.style_examples = style_examples

    # ---------- public ----------

    def compose(self, plan: ExamPlan, exam_id: Optional[str] = None) -> ComposedExam:
        exam_id = exam_id or uuid.uuid4().hex
        run = _CompositionRun(plan)
        accepted: Dict[str, AcceptedQuestion] = {}
        failed: List[str] = []

        logger.info(f"🚀 Composing exam {exam_id}: {len(plan)} slot(s), {plan.total_marks} marks")

        validation_pool = (
            ThreadPoolExecutor(max_workers=self.config.max_workers, thread_name_prefix="validate")
            if self.config.validation_timeout is not None
            else None
        )
        workers = max(1, min(self.config.max_workers, len(plan)))
        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="slot") as pool:
                futures = {
                    pool.submit(self._process_slot, run, s.slot_id, validation_pool): s.slot_id
                    for s in plan.slots
                }
                with tqdm(total=len(futures), desc=f"Exam {exam_id[:8]}", disable=not self.config.show_progress) as bar:
                    for fut in as_completed(futures):
                        slot_id = futures[fut]
                        try:
                            accepted[slot_id] = fut.result()
                        except _SlotFailed:
                            failed.append(slot_id)
                            self._cancel_all(run, futures)
                        except (_Cancelled, CancelledError):
                            run.mark_cancelled(slot_id)
                        except Exception:
                            self._cancel_all(run, futures)
                            raise
                        bar.update(1)
        finally:
            if validation_pool is not None:
                validation_pool.shutdown(wait=False, cancel_futures=True)

        if failed:
            order = {s.slot_id: s.index for s in plan.slots}
            failed.sort(key=lambda sid: order[sid])
            err = ExamCompositionFailed(failed, run.snapshot(), run.log.entries())
            logger.error(f"❌ {err.summary()}")
            raise err

        ordered = tuple(accepted[s.slot_id] for s in sorted(plan.slots, key=lambda s: s.index))
        total = sum(q.marks for q in ordered)
        assert total == plan.total_marks, f"Composed marks {total} != {plan.total_marks}"

        logger.info(f"✅ Exam {exam_id} composed: {len(ordered)} question(s), {total} marks, {len(run.log)} rejection(s)")
        return ComposedExam(exam_id=exam_id, slots=ordered, total_marks=total)

    # ---------- slot workers ----------

    def _cancel_all(self, run: _CompositionRun, futures) -> None:
        if not run.cancel.is_set():
            logger.warning("🛑 Slot failed; cancelling remaining work for this exam.")
            run.cancel.set()
        for f in futures:
            f.cancel()

    def _process_slot(
        self,
        run: _CompositionRun,
        slot_id: str,
        validation_pool: Optional[ThreadPoolExecutor],
    ) -> AcceptedQuestion:
        replaced = False
        tried: Set[str] = set()
        while True:
            slot = run.plan.get(slot_id)
            tried.add(slot.module)
            run.update(slot, SlotState.PENDING, replaced=replaced)

            result, last_score = self._attempt(run, slot, validation_pool, replaced)
            if result is not None:
                return result

            run.update(slot, SlotState.REJECTED_EXHAUSTED, self.config.max_retries, replaced, last_score)
            if replaced:
                logger.error(f"❌ Slot {slot_id} exhausted after replacement.")
                run.update(slot, SlotState.FAILED, self.config.max_retries, replaced, last_score)
                raise _SlotFailed(slot_id)

            try:
                new_slot = self.planner.replace_slot(run.plan, slot_id, exclude_modules=tried)
            except NoAlternativeSlotError as e:
                logger.error(f"❌ {e}")
                run.update(slot, SlotState.FAILED, self.config.max_retries, replaced, last_score)
                raise _SlotFailed(slot_id) from e

            run.plan.apply_replacement(new_slot)
            replaced = True

    def _attempt(
        self,
        run: _CompositionRun,
        slot: PlanSlot,
        validation_pool: Optional[ThreadPoolExecutor],
        replaced: bool,
    ) -> Tuple[Optional[AcceptedQuestion], Optional[float]]:
        """Generate/validate until accepted or max_retries rejections."""
        cfg = self.config
        candidate = CandidateQuestion(slot_id=slot.slot_id, text="")
        last_score: Optional[float] = None

        while candidate.rejection_count < cfg.max_retries:
            self._check_cancel(run)
            candidate.text = ""
            run.update(slot, SlotState.GENERATING, candidate.rejection_count, replaced, last_score)
            try:
                text = self.generator.generate(
                    slot.module, slot.question_type, slot.target_marks, self._examples(slot.module)
                )
            except Exception as e:
                self._reject(run, slot, candidate, None, "generation_failed", replaced, e)
                continue
            if not text or not str(text).strip():
                self._reject(run, slot, candidate, None, "empty_generation", replaced)
                continue
            candidate.text = str(text).strip()

            self._check_cancel(run)
            run.update(slot, SlotState.VALIDATING, candidate.rejection_count, replaced, last_score)
            try:
                score = self._score(candidate.text, slot.module, validation_pool)
            except FutureTimeout as e:
                self._reject(run, slot, candidate, None, "validation_timeout", replaced, e)
                continue
            except Exception as e:
                self._reject(run, slot, candidate, None, "validation_failed", replaced, e)
                continue

            if score is None or math.isnan(score) or not (0.0 <= score <= 1.0):
                self._reject(run, slot, candidate, None, "invalid_score", replaced)
                continue

            last_score = score
            if score >= cfg.alignment_threshold:
                run.update(slot, SlotState.ACCEPTED, candidate.rejection_count, replaced, score)
                logger.info(f"✅ Slot {slot.slot_id} accepted ({slot.module}/{slot.question_type.value}, score={score:.2f})")
                return (
                    AcceptedQuestion(
                        slot_id=slot.slot_id,
                        module=slot.module,
                        question_type=slot.question_type,
                        marks=slot.target_marks,
                        text=candidate.text,
                        alignment_score=score,
                    ),
                    score,
                )
            self._reject(run, slot, candidate, score, "low_alignment", replaced)

        return None, last_score

    def _score(self, text: str, module: str, pool: Optional[ThreadPoolExecutor]) -> Optional[float]:
        if pool is None:
            score = self.aligner.score(text, module)
        else:
            score = pool.submit(self.aligner.score, text, module).result(timeout=self.config.validation_timeout)
        return None if score is None else float(score)

    def _reject(
        self,
        run: _CompositionRun,
        slot: PlanSlot,
        candidate: CandidateQuestion,
        score: Optional[float],
        reason: str,
        replaced: bool,
        error: Optional[BaseException] = None,
    ) -> None:
        candidate.rejection_count += 1
        run.log.append(
            RejectedQuestion(
                slot_id=slot.slot_id,
                module=slot.module,
                question_type=slot.question_type,
                text=candidate.text,
                score=score,
                reason=reason,
            )
        )
        state = (
            SlotState.REJECTED_RETRY
            if candidate.rejection_count < self.config.max_retries
            else SlotState.REJECTED_EXHAUSTED
        )
        run.update(slot, state, candidate.rejection_count, replaced, score)

        detail = f" ({type(error).__name__}: {error})" if error is not None else ""
        score_txt = "n/a" if score is None else f"{score:.2f}"
        logger.warning(
            f"⚠️ Slot {slot.slot_id} rejected [{reason}] score={score_txt} "
            f"({candidate.rejection_count}/{self.config.max_retries}){detail}"
        )

    def _examples(self, module: str) -> Tuple[str, ...]:
        return tuple(self.style_examples.get(module, ()))[: self.config.style_example_limit]

    @staticmethod
    def _check_cancel(run: _CompositionRun) -> None:
        if run.cancel.is_set():
            raise _Cancelled()


# ============================
# Functional API
# ============================

def compose_exam(
    plan: ExamPlan,
    planner: AllocationPlanner,
    generator: GenerationOracle,
    aligner: AlignmentOracle,
    config: Optional[ComposerConfig] = None,
    exam_id: Optional[str] = None,
) -> ComposedExam:
    return CompositionController(planner, generator, aligner, config).compose(plan, exam_id)
