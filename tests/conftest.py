"""
Shared pytest fixtures for the documentation build tests.

This module provides:
- docs_root: a small documentation tree with an English primary and a
  partially translated French folder
- context: BuildContext over docs_root
- runner: a fake subprocess.run that records commands
"""

from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import pytest

root_path = Path(__file__).parent.parent
for path in (root_path, root_path / "scripts"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from build_docs import BuildContext, load_languages  # noqa: E402


LANGUAGES = [
    {"code": "en", "name": "English", "enabled": True, "primary": True},
    {
        "code": "fr",
        "name": "Français",
        "enabled": True,
        "not_translated_message": "Not yet translated",
    },
    {"code": "de", "name": "Deutsch", "enabled": False},
    {"code": "es", "name": "Español", "enabled": True, "not_translated_message": "Sin traducir"},
]

DOCFX_CONFIG = {
    "metadata": [{"src": [{"files": ["src/**.csproj"]}], "dest": "api"}],
    "build": {
        "content": [{"files": ["**/*.md", "**/toc.yml"]}],
        "dest": "../_site/en",
    },
}


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def docs_root(tmp_path: Path) -> Path:
    """Documentation root with en/ (primary) and a partial fr/ translation."""
    write(tmp_path / "languages.json", json.dumps(LANGUAGES, ensure_ascii=False))

    en = tmp_path / "en"
    write(en / "docfx.json", json.dumps(DOCFX_CONFIG, indent=2))
    write(en / "index.md", "# Welcome\n\nHome page.\n")
    write(en / "manual" / "toc.yml", "- name: Intro\n\n  href: intro.md\n")
    write(en / "manual" / "intro.md", "# Intro\n\nFirst paragraph.\n\nSecond paragraph.\n")
    write(en / "manual" / "setup.md", "# Setup\n\nInstall it.\n")
    write(en / "manual" / "advanced" / "tuning.md", "---\ntitle: Tuning\n---\n# Tuning\n\nFast.\n")
    write(en / "manual" / "oneliner.md", "# Just a heading\n")

    fr = tmp_path / "fr"
    write(fr / "index.md", "# Bienvenue\n\nAccueil.\n")
    write(fr / "manual" / "intro.md", "# Introduction\n\nPremier paragraphe.\n")
    return tmp_path


@pytest.fixture
def context(docs_root: Path) -> BuildContext:
    return BuildContext(root=docs_root, languages=load_languages(docs_root / "languages.json"))


class RecordingRunner:
    """Stands in for subprocess.run; fails for commands matching `fail_on`."""

    def __init__(self, fail_on: str | None = None, returncode: int = 3, on_build=None):
        self.calls: list[tuple[list[str], Path | None]] = []
        self.fail_on = fail_on
        self.returncode = returncode
        self.on_build = on_build

    def __call__(self, command, cwd=None):
        self.calls.append((list(command), cwd))
        if self.on_build is not None and command[1] == "build":
            self.on_build(Path(command[2]))
        joined = " ".join(command)
        code = self.returncode if self.fail_on and self.fail_on in joined else 0
        return subprocess.CompletedProcess(command, code)

    @property
    def commands(self) -> list[list[str]]:
        return [command for command, _ in self.calls]


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def make_runner():
    """Factory for runners that fail or hook into builds."""
    return RecordingRunner
