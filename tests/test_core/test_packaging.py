"""Tests for the declared distribution metadata in pyproject.toml."""

import tomllib
from pathlib import Path

import pytest

PYPROJECT = Path(__file__).resolve().parents[2] / "pyproject.toml"


@pytest.fixture(scope="module")
def project() -> dict:
    with PYPROJECT.open("rb") as handle:
        return tomllib.load(handle)["project"]


def _requirement(project: dict, name: str) -> str:
    return next(dep for dep in project["dependencies"] if dep.split(">")[0].split("<")[0] == name)


class TestProjectMetadata:
    def test_distribution_name(self, project) -> None:
        assert project["name"] == "mailbridge-mcp"

    def test_console_script(self, project) -> None:
        assert project["scripts"]["mailbridge"] == "mailbridge.cli.main:cli"

    def test_mcp_pinned_below_next_major(self, project) -> None:
        # Tool.inputSchema is read directly; 2.x renames it.
        assert "<2" in _requirement(project, "mcp")

    def test_icalendar_declared(self, project) -> None:
        assert _requirement(project, "icalendar").startswith("icalendar>=")
