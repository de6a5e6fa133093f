"""
exam_ai_core/history_store.py
-----------------------------------
HistoryStore over a JSON question bank:

    data/<institution_id>/<course_code>/<paper>.json

Each file holds a list of question records:
    {"module": "Thermo", "question_type": "LONG", "marks": 10, "year": 2021,
     "source_document": "2021-final.pdf", "text": "..."}

Records are filtered by year range and deduplicated by
(module, question_type, marks, year, source_document).
"""

import os
import json
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from exam_core.schema import HistoricalQuestion

logger = logging.getLogger(__name__)


def record_from_dict(data: Mapping, institution_id: str = "", course_code: str = "", source_document: str = "") -> HistoricalQuestion:
    return HistoricalQuestion(
        module=str(data["module"]).strip(),
        question_type=data.get("question_type") or data.get("type"),
        marks=int(data["marks"]),
        year=int(data["year"]),
        institution_id=str(data.get("institution_id", institution_id)),
        course_code=str(data.get("course_code", course_code)),
        source_document=str(data.get("source_document", source_document)),
        text=str(data.get("text", "") or ""),
    )


def deduplicate(records: Iterable[HistoricalQuestion]) -> List[HistoricalQuestion]:
    seen: Set[Tuple] = set()
    out: List[HistoricalQuestion] = []
    for r in records:
        if r.dedup_key in seen:
            continue
        seen.add(r.dedup_key)
        out.append(r)
    return out


class JsonHistoryStore:
    def __init__(self, base_dir: str = "data"):
        self.base_dir = base_dir

    def _course_dir(self, institution_id: str, course_code: str) -> str:
        return os.path.join(self.base_dir, institution_id, course_code)

    def fetch(
        self,
        institution_id: str,
        course_code: str,
        year_range: Optional[Tuple[int, int]] = None,
    ) -> List[HistoricalQuestion]:
        root = self._course_dir(institution_id, course_code)
        if not os.path.isdir(root):
            logger.warning(f"⚠️ No history folder for {institution_id}/{course_code}: {root}")
            return []

        records: List[HistoricalQuestion] = []
        skipped = 0
        for dirpath, _, files in os.walk(root):
            for name in sorted(files):
                if not name.endswith(".json"):
                    continue
                path = os.path.join(dirpath, name)
                try:
                    with open(path, "r", encoding="utf-8") as f:
                        rows = json.load(f)
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    logger.warning(f"⚠️ Skipping unreadable file {path}: {e}")
                    continue
                if isinstance(rows, dict):
                    rows = rows.get("questions", [])
                if not isinstance(rows, list):
                    logger.warning(f"⚠️ Skipping {path}: expected a list of questions")
                    continue
                for row in rows:
                    try:
                        records.append(record_from_dict(row, institution_id, course_code, source_document=name))
                    except (KeyError, TypeError, ValueError) as e:
                        skipped += 1
                        logger.debug(f"Skipping malformed record in {path}: {e}")

        if skipped:
            logger.warning(f"⚠️ Skipped {skipped} malformed record(s) under {root}")

        if year_range is not None:
            lo, hi = year_range
            records = [r for r in records if lo <= r.year <= hi]

        unique = deduplicate(records)
        logger.info(f"📚 Loaded {len(unique)} question(s) for {institution_id}/{course_code} from {root}")
        return unique

    def save(self, institution_id: str, course_code: str, paper: str, records: Iterable[HistoricalQuestion]) -> str:
        """Write records as one paper file; returns the path."""
        root = self._course_dir(institution_id, course_code)
        os.makedirs(root, exist_ok=True)
        path = os.path.join(root, paper if paper.endswith(".json") else f"{paper}.json")
        rows: List[Dict] = [
            {
                "module": r.module,
                "question_type": r.question_type.value,
                "marks": r.marks,
                "year": r.year,
                "source_document": r.source_document,
                "text": r.text,
            }
            for r in records
        ]
        with open(path, "w", encoding="utf-8") as f:
            json.dump(rows, f, ensure_ascii=False, indent=2)
        return path
