# tests/test_history_store.py

import json

from exam_ai_core.history_store import JsonHistoryStore, deduplicate, record_from_dict
from exam_core.schema import HistoricalQuestion, QuestionType


def _write(path, payload):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_record_from_dict_accepts_type_alias():
    r = record_from_dict({"module": " Thermo ", "type": "long", "marks": "10", "year": 2021}, "UNI", "ME101", "p.json")
    assert r.module == "Thermo"
    assert r.question_type == QuestionType.LONG
    assert r.marks == 10
    assert r.institution_id == "UNI"
    assert r.source_document == "p.json"


def test_deduplicate_keeps_first():
    a = HistoricalQuestion("Thermo", "SHORT", 5, 2020, source_document="x", text="first")
    b = HistoricalQuestion("Thermo", "SHORT", 5, 2020, source_document="x", text="second")
    c = HistoricalQuestion("Thermo", "SHORT", 5, 2020, source_document="y")
    assert deduplicate([a, b, c]) == [a, c]


def test_fetch_filters_dedups_and_skips_malformed(tmp_path):
    course = tmp_path / "UNI" / "ME101"
    _write(course / "2019-final.json", [
        {"module": "Thermo", "question_type": "LONG", "marks": 10, "year": 2019},
        {"module": "Thermo", "question_type": "LONG", "marks": 10, "year": 2019},
        {"module": "Fluids", "question_type": "MCQ", "marks": 0, "year": 2019},
        {"question_type": "MCQ", "marks": 2, "year": 2019},
    ])
    _write(course / "2022-final.json", {"questions": [
        {"module": "Fluids", "question_type": "SHORT", "marks": 5, "year": 2022, "text": "Define viscosity."},
    ]})
    _write(course / "notes.txt", ["ignored"])

    store = JsonHistoryStore(str(tmp_path))
    records = store.fetch("UNI", "ME101")
    assert len(records) == 2
    assert {r.module for r in records} == {"Thermo", "Fluids"}
    assert all(r.course_code == "ME101" for r in records)

    recent = store.fetch("UNI", "ME101", year_range=(2020, 2024))
    assert [r.module for r in recent] == ["Fluids"]
    assert recent[0].source_document == "2022-final.json"


def test_fetch_missing_course_is_empty(tmp_path):
    assert JsonHistoryStore(str(tmp_path)).fetch("UNI", "NOPE") == []


def test_save_then_fetch(tmp_path):
    store = JsonHistoryStore(str(tmp_path))
    records = [
        HistoricalQuestion("Optics", "NUMERICAL", 8, 2021, source_document="2021-mid.pdf", text="Find the focal length."),
        HistoricalQuestion("Optics", "SHORT", 4, 2021, source_document="2021-mid.pdf"),
    ]
    path = store.save("UNI", "PH201", "2021-mid", records)
    assert path.endswith("2021-mid.json")

    loaded = store.fetch("UNI", "PH201")
    assert [(r.module, r.question_type, r.marks, r.text) for r in loaded] == [
        (r.module, r.question_type, r.marks, r.text) for r in records
    ]


def test_fetch_skips_unreadable_files(tmp_path):
    course = tmp_path / "UNI" / "ME101"
    _write(course / "2021-final.json", [{"module": "Thermo", "question_type": "LONG", "marks": 10, "year": 2021}])
    (course / "bad.json").write_text("{not json", encoding="utf-8")
    _write(course / "odd.json", {"questions": "nope"})
    _write(course / "scalar.json", 42)

    records = JsonHistoryStore(str(tmp_path)).fetch("UNI", "ME101")
    assert [r.module for r in records] == ["Thermo"]
