# tests/test_packaging.py

from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent


def test_readme_is_user_facing():
    pyproject = (ROOT / "pyproject.toml").read_text(encoding="utf-8")
    readme_line = next(line for line in pyproject.splitlines() if line.startswith("readme"))
    readme = readme_line.split("=", 1)[1].strip().strip('"')

    assert readme == "README.md"
    assert (ROOT / readme).is_file()
    assert "build_exam" in (ROOT / readme).read_text(encoding="utf-8")
