from __future__ import annotations

import subprocess
from collections.abc import Collection
from pathlib import Path


class CommitFailure(RuntimeError):
    """Raised when a git operation needed for commit bookkeeping fails."""

    def __init__(self, message: str, *, command: list[str] | None = None) -> None:
        super().__init__(message)
        self.command = command or []


class GitRepository:
    def __init__(self, repo_root: Path) -> None:
        self.repo_root = repo_root.resolve()

    def _run_git(self, args: list[str], check: bool = True) -> subprocess.CompletedProcess[str]:
        command = ["git", "--no-pager", *args]
        try:
            proc = subprocess.run(
                command,
                cwd=self.repo_root,
                text=True,
                capture_output=True,
            )
        except FileNotFoundError as exc:
            raise CommitFailure("git executable not found.", command=command) from exc
        if check and proc.returncode != 0:
            raise CommitFailure(proc.stderr.strip() or proc.stdout.strip(), command=command)
        return proc

    def is_repository(self) -> bool:
        try:
            proc = self._run_git(["rev-parse", "--is-inside-work-tree"], check=False)
        except CommitFailure:
            return False
        return proc.returncode == 0 and proc.stdout.strip() == "true"

    def head(self) -> str:
        """Short hash of HEAD, or an empty string before the first commit."""
        proc = self._run_git(["rev-parse", "--short", "HEAD"], check=False)
        if proc.returncode != 0:
            return ""
        return proc.stdout.strip()

    def changed_paths(self, exclude: Collection[str] = ()) -> list[str]:
        proc = self._run_git(["status", "--porcelain", "--untracked-files=all"])
        paths: list[str] = []
        for line in proc.stdout.splitlines():
            if len(line) > 3:
                # Renames read "old -> new".
                path = line[3:].strip().split(" -> ")[-1]
                if path not in exclude:
                    paths.append(path)
        return paths

    def is_clean(self, exclude: Collection[str] = ()) -> bool:
        return not self.changed_paths(exclude)

    def stage_all(self, exclude: Collection[str] = ()) -> None:
        self._run_git(["add", "-A", "--", ".", *(f":(exclude){path}" for path in exclude)])

    def commit(self, message: str) -> str:
        self._run_git(["commit", "-m", message])
        return self.head()

    def relative_path(self, path: Path) -> str | None:
        """Repository-relative POSIX path, or None for paths outside the work tree."""
        try:
            return path.resolve().relative_to(self.repo_root).as_posix()
        except ValueError:
            return None

    def exclude_locally(self, relative_path: str) -> bool:
        """Add a path to ``.git/info/exclude``; returns True if the file changed."""
        proc = self._run_git(["rev-parse", "--git-path", "info/exclude"])
        exclude_file = Path(proc.stdout.strip())
        if not exclude_file.is_absolute():
            exclude_file = self.repo_root / exclude_file
        pattern = f"/{relative_path}"
        try:
            lines = exclude_file.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            lines = []
        if pattern in lines:
            return False
        exclude_file.parent.mkdir(parents=True, exist_ok=True)
        lines.append(pattern)
        exclude_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return True
