import subprocess
from pathlib import Path

import pytest

from autopilot.layout import WorkspaceLayout


def _git(repo_path: Path, *args: str) -> str:
    proc = subprocess.run(
        ["git", *args], cwd=repo_path, check=True, text=True, capture_output=True
    )
    return proc.stdout.strip()


def init_git_repo(repo_path: Path) -> None:
    _git(repo_path, "init")
    _git(repo_path, "config", "user.email", "test@example.com")
    _git(repo_path, "config", "user.name", "Test User")
    _git(repo_path, "config", "commit.gpgsign", "false")
    (repo_path / "README.md").write_text("seed\n", encoding="utf-8")
    _git(repo_path, "add", "README.md")
    _git(repo_path, "commit", "-m", "seed")


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    init_git_repo(tmp_path)
    return tmp_path


@pytest.fixture
def layout(tmp_path: Path) -> WorkspaceLayout:
    workspace = WorkspaceLayout.for_root(tmp_path)
    workspace.ensure()
    return workspace
