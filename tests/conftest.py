from __future__ import annotations

import logging
import stat
import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
TESTS = ROOT / "tests"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(TESTS) not in sys.path:
    sys.path.insert(0, str(TESTS))

from bldfix.tools.vcs import GitRepository  # noqa: E402


@pytest.fixture()
def git_repo(tmp_path: Path) -> GitRepository:
    """Create a small git repository with one committed file."""

    repo = GitRepository.initialise(tmp_path / "repo")
    (repo.root / "README.md").write_text("# demo\n", encoding="utf-8")
    repo.git("add", "--all")
    repo.git("commit", "-m", "Add readme")
    return repo


@pytest.fixture()
def make_script(tmp_path: Path) -> Callable[[str, str], Path]:
    """Return a factory writing executable ``/bin/sh`` scripts into ``tmp_path/bin``."""

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _write(name: str, body: str) -> Path:
        script = bin_dir / name
        script.write_text("#!/bin/sh\n" + textwrap.dedent(body).lstrip(), encoding="utf-8")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _write


@pytest.fixture(autouse=True)
def _reset_bldfix_logging():
    yield
    for name in ("bldfix", "bldfix.invocations"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
