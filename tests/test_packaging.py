"""Package metadata."""

from pathlib import Path

import pytest

import nord_map

tomllib = pytest.importorskip("tomllib")

PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


def _project() -> dict:
    with PYPROJECT.open("rb") as fh:
        return tomllib.load(fh)["project"]


def test_metadata() -> None:
    project = _project()
    assert project["name"] == "image2nord"
    assert project["version"] == nord_map.__version__
    assert "readme" not in project


def test_script_points_at_cli() -> None:
    assert _project()["scripts"]["image2nord"] == "nord_map.cli:main"
