# exam_core/pattern_analyzer.py

from __future__ import annotations

import logging
import math
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import InsufficientHistoryError
from .schema import (
    HistoricalQuestion,
    MarkDistributionEntry,
    ModuleScore,
    PatternReport,
    QuestionType,
    Trend,
)

logger = logging.getLogger(__name__)


# ============================
# Config
# ============================

@dataclass(frozen=True)
class AnalyzerConfig:
    """
    Tunables for pattern analysis.
    - decay: per-year recency weight, 0 < decay < 1 (larger = longer memory)
    - overdue_threshold: years absent before the overdue bonus kicks in
    - overdue_step / overdue_cap: bonus per absent year, capped (0.2 / 0.8 → max x1.8)
    - min_distinct_years: below this, analysis raises InsufficientHistoryError
    - trend_tolerance: relative change needed to call a trend UP/DOWN
    """
    decay: float = 0.9
    overdue_threshold: int = 2
    overdue_step: float = 0.2
    overdue_cap: float = 0.8
    min_distinct_years: int = 5
    trend_tolerance: float = 0.10
    confidence_steepness: float = 3.0
    style_example_limit: int = 3

    def __post_init__(self) -> None:
        if not (0.0 < self.decay < 1.0):
            raise ValueError(f"decay must be strictly between 0 and 1: {self.decay}")
        if self.overdue_threshold < 1:
            raise ValueError(f"overdue_threshold must be >= 1: {self.overdue_threshold}")
        if self.overdue_step < 0 or self.overdue_cap < 0:
            raise ValueError("overdue_step and overdue_cap must be non-negative")
        if self.min_distinct_years < 1:
            raise ValueError(f"min_distinct_years must be >= 1: {self.min_distinct_years}")
        if self.trend_tolerance < 0:
            raise ValueError(f"trend_tolerance must be non-negative: {self.trend_tolerance}")
        if self.confidence_steepness <= 0:
            raise ValueError("confidence_steepness must be positive")


@dataclass
class _ModuleAccumulator:
    weighted: float = 0.0
    marks: int = 0
    count: int = 0
    last_seen: int = 0
    marks_by_year: Dict[int, int] = field(default_factory=lambda: defaultdict(int))
    texts: List[Tuple[int, str]] = field(default_factory=list)


# ============================
# Helpers
# ============================

def recency_weight(year: int, current_year: int, decay: float) -> float:
    """decay ** age; records from the future count as age 0."""
    return decay ** max(0, current_year - year)


def overdue_multiplier(years_absent: int, config: Optional[AnalyzerConfig] = None) -> float:
    """
    1.0 below the threshold, otherwise 1 + min(years_absent * step, cap).
    The cap stops modules retired from the curriculum from running away.
    """
    config = config or AnalyzerConfig()
    if years_absent < config.overdue_threshold:
        return 1.0
    return 1.0 + min(years_absent * config.overdue_step, config.overdue_cap)


def _saturate(ratio: float, steepness: float) -> float:
    """Monotonic map [0,1] -> [0,1] that rises fast then flattens."""
    ratio = min(1.0, max(0.0, ratio))
    return (1.0 - math.exp(-steepness * ratio)) / (1.0 - math.exp(-steepness))


def _classify_trend(marks_by_year: Dict[int, int], years: Sequence[int], tolerance: float) -> Trend:
    """Earliest third vs latest third of the corpus years (by count, not calendar)."""
    if len(years) < 2:
        return Trend.STABLE
    k = max(1, len(years) // 3)
    early = sum(marks_by_year.get(y, 0) for y in years[:k]) / k
    late = sum(marks_by_year.get(y, 0) for y in years[-k:]) / k
    if early == 0:
        return Trend.UP if late > 0 else Trend.STABLE
    change = (late - early) / early
    if change > tolerance:
        return Trend.UP
    if change < -tolerance:
        return Trend.DOWN
    return Trend.STABLE


def type_distribution(records: Sequence[HistoricalQuestion]) -> Dict[QuestionType, float]:
    """Percent per question type. Empty dict (not NaN) when there are no records."""
    total = len(records)
    if total == 0:
        return {}
    counts = Counter(r.question_type for r in records)
    return {t: counts[t] * 100.0 / total for t in QuestionType if counts[t] > 0}


def _sort_key(r: HistoricalQuestion):
    return (r.module, r.year, r.question_type.value, r.marks, r.source_document, r.text)


# ============================
# Main API
# ============================

def analyze(
    records: Iterable[HistoricalQuestion],
    current_year: int,
    config: Optional[AnalyzerConfig] = None,
    *,
    allow_insufficient: bool = False,
) -> PatternReport:
    """
    Turn historical questions into a PatternReport.

    Parameters:
        records: historical questions for one institution/course
        current_year: year the predicted exam sits in
        config: AnalyzerConfig (defaults if None)
        allow_insufficient: proceed with too few years; the report
            then carries reduced_confidence=True

    Pure function: no hidden state, identical inputs give identical reports.
    Records are ordered deterministically before accumulation so float sums
    do not depend on the iteration order of the input collection.
    """
    config = config or AnalyzerConfig()
    records = sorted(records, key=_sort_key)
    years = sorted({r.year for r in records})

    reduced = False
    if len(years) < config.min_distinct_years:
        if not allow_insufficient:
            raise InsufficientHistoryError(len(years), config.min_distinct_years)
        reduced = True
        logger.warning(
            f"⚠️ Only {len(years)} distinct year(s) of history "
            f"(min {config.min_distinct_years}); report flagged as reduced confidence."
        )

    acc: Dict[str, _ModuleAccumulator] = {}
    future = 0
    for r in records:
        if r.year > current_year:
            future += 1
        a = acc.setdefault(r.module, _ModuleAccumulator(last_seen=r.year))
        a.weighted += recency_weight(r.year, current_year, config.decay)
        a.marks += r.marks
        a.count += 1
        a.last_seen = max(a.last_seen, r.year)
        a.marks_by_year[r.year] += r.marks
        if r.text:
            a.texts.append((r.year, r.text))

    if future:
        logger.warning(f"⚠️ {future} record(s) dated after {current_year}; weighted as current year.")

    # Overdue adjustment
    adjusted: Dict[str, Tuple[float, float]] = {}
    for module, a in acc.items():
        mult = overdue_multiplier(current_year - a.last_seen, config)
        adjusted[module] = (a.weighted * mult, mult)

    max_wf = max((wf for wf, _ in adjusted.values()), default=0.0)

    scores: Dict[str, ModuleScore] = {}
    marks_dist: Dict[str, MarkDistributionEntry] = {}
    style: Dict[str, Tuple[str, ...]] = {}
    for module in sorted(acc):
        a = acc[module]
        wf, mult = adjusted[module]
        ratio = wf / max_wf if max_wf > 0 else 0.0
        present = tuple(sorted(a.marks_by_year))

        scores[module] = ModuleScore(
            module=module,
            weighted_frequency=wf,
            last_seen_year=a.last_seen,
            overdue_bonus_applied=mult > 1.0,
            average_marks=a.marks / a.count,
            confidence=_saturate(ratio, config.confidence_steepness),
            predicted_likelihood=min(1.0, ratio),
            base_frequency=a.weighted,
            overdue_multiplier=mult,
            appearances=a.count,
            years_present=present,
        )
        marks_dist[module] = MarkDistributionEntry(
            module=module,
            average_marks=a.marks / len(present),
            trend=_classify_trend(a.marks_by_year, years, config.trend_tolerance),
        )

        # Newest texts first, unique
        seen: List[str] = []
        for _, text in sorted(a.texts, key=lambda t: -t[0]):
            if text not in seen:
                seen.append(text)
            if len(seen) >= config.style_example_limit:
                break
        if seen:
            style[module] = tuple(seen)

    type_marks: Dict[QuestionType, List[int]] = defaultdict(list)
    for r in records:
        type_marks[r.question_type].append(r.marks)

    total_marks = sum(r.marks for r in records)
    report = PatternReport(
        module_scores=scores,
        type_distribution=type_distribution(records),
        mark_distribution=marks_dist,
        current_year=current_year,
        distinct_years=tuple(years),
        total_records=len(records),
        reduced_confidence=reduced,
        type_average_marks={t: sum(m) / len(m) for t, m in type_marks.items()},
        mean_question_marks=(total_marks / len(records)) if records else 0.0,
        style_examples=style,
    )

    logger.info(
        f"📊 Analyzed {len(records)} question(s) over {len(years)} year(s): "
        f"{len(scores)} module(s), hot topics: {', '.join(report.hot_topics()[:5]) or '-'}"
    )
    return report
