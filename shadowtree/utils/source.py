"""
Choosing the existing worktree that seeds files into a new one.
"""

from pathlib import Path
from typing import List, Optional

from shadowtree.config import LATEST_SOURCE, WorktreeConfig
from shadowtree.core import BARE_DIR_NAME, ShadowTreeRepo, Worktree


ACTIVITY_INDICATORS = ('.git/index', 'package.json', '.env')
PREFERRED_BRANCH = 'main'


def activity_timestamp(path: Path) -> float:
    """Latest mtime of a worktree directory and its activity indicator files."""
    try:
        latest = path.stat().st_mtime
    except OSError:
        return 0.0
    for indicator in ACTIVITY_INDICATORS:
        candidate = path / indicator
        try:
            if candidate.is_file():
                latest = max(latest, candidate.stat().st_mtime)
        except OSError:
            continue
    return latest


def _candidates(worktrees: List[Worktree], exclude_dir_name: Optional[str]) -> List[Worktree]:
    return [
        wt for wt in worktrees
        if not wt.bare
        and wt.path.name != BARE_DIR_NAME
        and wt.path.name != exclude_dir_name
        and wt.path.is_dir()
    ]


def find_latest_worktree(worktrees: List[Worktree], exclude_dir_name: Optional[str] = None) -> Optional[Path]:
    latest_path = None
    latest_time = 0.0
    for worktree in _candidates(worktrees, exclude_dir_name):
        timestamp = activity_timestamp(worktree.path)
        if timestamp > latest_time:
            latest_time = timestamp
            latest_path = worktree.path
    return latest_path


def find_worktree_by_branch(
    worktrees: List[Worktree],
    branch: str,
    exclude_dir_name: Optional[str] = None
) -> Optional[Path]:
    for worktree in _candidates(worktrees, exclude_dir_name):
        if worktree.branch == branch:
            return worktree.path
    return None


def find_source_worktree(
    repo: ShadowTreeRepo,
    exclude_dir_name: Optional[str],
    config: Optional[WorktreeConfig] = None
) -> Optional[Path]:
    """Pick the worktree to copy seed files from.

    An explicit `source` branch wins, `latest` picks the most recently
    active worktree; without configuration `main` is preferred and the most
    recently active worktree is the fallback.
    """
    worktrees = repo.get_worktrees()
    preference = config.source if config else None

    if preference == LATEST_SOURCE:
        return find_latest_worktree(worktrees, exclude_dir_name)
    if preference:
        return find_worktree_by_branch(worktrees, preference, exclude_dir_name)

    main = find_worktree_by_branch(worktrees, PREFERRED_BRANCH, exclude_dir_name)
    if main is not None:
        return main
    return find_latest_worktree(worktrees, exclude_dir_name)
