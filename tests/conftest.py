"""Shared fixtures for agent-conductor tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from helpers import commit_file, git

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def isolated_git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    home = tmp_path / "home"
    xdg = tmp_path / "xdg"
    home.mkdir()
    xdg.mkdir()

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test Author")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "author@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test Author")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "author@example.com")


@pytest.fixture
def origin_repo(tmp_path: Path, isolated_git_env: None) -> Path:
    """Bare remote with one commit on ``main``."""

    seed = tmp_path / "seed"
    seed.mkdir()
    git(seed, "init", "--initial-branch=main")
    commit_file(seed, "README.md", "hello\n", "initial commit")
    remote = tmp_path / "origin.git"
    git(tmp_path, "clone", "--bare", str(seed), str(remote))
    return remote


@pytest.fixture
def local_repo(tmp_path: Path, origin_repo: Path) -> Path:
    """Working clone of :func:`origin_repo` with ``origin`` configured."""

    repo = tmp_path / "repo"
    git(tmp_path, "clone", str(origin_repo), str(repo))
    return repo
