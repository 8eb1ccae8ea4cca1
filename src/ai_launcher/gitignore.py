from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

LOGGER = logging.getLogger("ai_launcher.gitignore")

GIT_MARKER_NAME = ".git"
GITIGNORE_FILE_NAME = ".gitignore"
DEFAULT_IGNORE_PATTERNS = (".env",)


def is_git_repository(project_dir: Path) -> bool:
    # .git is a file for worktrees and submodules.
    return (project_dir / GIT_MARKER_NAME).exists()


def ensure_ignored(project_dir: Path, patterns: Iterable[str] = DEFAULT_IGNORE_PATTERNS) -> bool:
    if not is_git_repository(project_dir):
        LOGGER.debug("%s is not a git repository, skipping %s update", project_dir, GITIGNORE_FILE_NAME)
        return False

    gitignore_file = project_dir / GITIGNORE_FILE_NAME
    existing = ""
    if gitignore_file.exists():
        existing = gitignore_file.read_text(encoding="utf-8")
    present = {line.strip() for line in existing.splitlines()}

    missing: list[str] = []
    for pattern in patterns:
        normalized = str(pattern).strip()
        if not normalized or normalized in present or normalized in missing:
            continue
        missing.append(normalized)

    if not missing:
        LOGGER.debug("%s already up to date", gitignore_file)
        return False

    addition = "".join(f"{pattern}\n" for pattern in missing)
    if existing and not existing.endswith("\n"):
        addition = "\n" + addition
    with gitignore_file.open("a", encoding="utf-8") as handle:
        handle.write(addition)
    LOGGER.debug("Added %s to %s", ", ".join(missing), gitignore_file)
    return True
