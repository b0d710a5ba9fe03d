"""
Commands for adding, removing and listing worktrees.
"""

import shutil
import subprocess
from pathlib import Path
from typing import Optional

from shadowtree.config import load_worktree_config
from shadowtree.core import (
    DirtyWorktreeError,
    ShadowTreeError,
    ShadowTreeRepo,
    sanitize_branch_name
)
from shadowtree.output import Output
from shadowtree.utils.files import copy_env_files, copy_included_files
from shadowtree.utils.install import install_dependencies
from shadowtree.utils.source import find_source_worktree


def allow_direnv(worktree_path: Path, output: Output) -> bool:
    """Run `direnv allow` for a worktree with an .envrc; missing direnv is fine."""
    if not (worktree_path / '.envrc').is_file() or shutil.which('direnv') is None:
        return False
    try:
        result = subprocess.run(
            ['direnv', 'allow', str(worktree_path)],
            capture_output=True,
            text=True
        )
    except OSError as e:
        output.debug(f"direnv allow failed: {e}")
        return False
    if result.returncode != 0:
        output.debug(f"direnv allow failed: {result.stderr.strip()}")
        return False
    output.info("Allowed direnv")
    return True


def seed_worktree(repo: ShadowTreeRepo, worktree_path: Path, output: Output) -> Optional[Path]:
    """Copy env files and configured includes into a new worktree from a source worktree."""
    config = load_worktree_config(repo.root, output)
    source = find_source_worktree(repo, worktree_path.name, config)
    if source is None:
        output.debug("No source worktree to copy files from")
        return None

    output.debug(f"Copying files from {source.name}")
    copy_env_files(source, worktree_path, output)
    copy_included_files(source, worktree_path, config.include, output)
    return source


def worktree_add_command(
    repo: ShadowTreeRepo,
    branch: str,
    start_point: Optional[str] = None,
    install: bool = True,
    merge: bool = True,
    output: Optional[Output] = None
) -> Path:
    """Provision a worktree for a branch, seed its files and install its dependencies."""
    output = output or Output()
    worktree_path = repo.add_worktree(
        branch,
        start_point=start_point,
        merge_default=merge,
        output=output
    )

    seed_worktree(repo, worktree_path, output)
    allow_direnv(worktree_path, output)

    if install:
        failures = install_dependencies(worktree_path, output)
        if failures:
            output.warning("Some dependencies were not installed; the worktree is still usable")
    else:
        output.debug("Skipping dependency installation")

    output.success(f"Worktree ready: {worktree_path}")
    output.command(f"cd {worktree_path}")
    return worktree_path


def worktree_remove_command(
    repo: ShadowTreeRepo,
    name: str,
    force: bool = False,
    output: Optional[Output] = None
) -> Path:
    """Remove a worktree by directory name (or branch name)."""
    output = output or Output()
    dir_name = sanitize_branch_name(name)
    worktree = repo.find_worktree(dir_name)
    if worktree is None:
        raise ShadowTreeError(f"No worktree named '{dir_name}'")

    if not repo.remove_worktree(worktree.path, force=force):
        if force:
            raise ShadowTreeError(f"Failed to remove worktree '{dir_name}'")
        raise DirtyWorktreeError(worktree.path)

    output.success(f"Removed worktree {dir_name}")
    return worktree.path


def worktree_list_command(repo: ShadowTreeRepo, output: Optional[Output] = None) -> int:
    output = output or Output()
    worktrees = repo.get_worktrees()
    if not worktrees:
        output.info("No worktrees found")
        return 0

    width = max(len(wt.name) for wt in worktrees)
    for worktree in worktrees:
        branch = worktree.branch or f"(detached {(worktree.head or '')[:7]})"
        output.info(f"{worktree.name.ljust(width)}  {branch}")
    return 0
