"""Checks on the project metadata shipped with the package."""

import re
from pathlib import Path

ROOT = Path(__file__).parent.parent


def test_readme_is_the_project_readme():
    text = (ROOT / "pyproject.toml").read_text()
    match = re.search(r'^readme\s*=\s*"([^"]+)"', text, flags=re.MULTILINE)
    assert match is not None
    readme = ROOT / match.group(1)
    assert readme.name == "README.md"
    assert readme.read_text().startswith("# abltop")
