"""
Command for converting a normal repository into the bare + worktrees layout.
"""

import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional

import git
from git import Repo

from shadowtree.core import (
    BARE_DIR_NAME,
    ShadowTreeError,
    ShadowTreeRepo,
    require_tool,
    sanitize_branch_name,
    write_gitdir_pointer
)
from shadowtree.output import Output


MIN_GIT_VERSION = (2, 20)

# Untracked items carried over from the old checkout
COPY_ITEMS = [
    '.env',
    '.env.local',
    '.env.development',
    '.env.production',
    '.env.test',
    'node_modules',
    'vendor',
    'build',
    'dist',
    '.vscode',
    '.idea',
    '*.log',
]


def backup_path_for(repo_path: Path, now: Optional[datetime] = None) -> Path:
    stamp = (now or datetime.now()).strftime('%Y%m%d-%H%M%S')
    return repo_path.parent / f"{repo_path.name}-backup-{stamp}"


def copy_untracked_items(source: Path, destination: Path, output: Output) -> int:
    """Copy the COPY_ITEMS found in SOURCE into DESTINATION; returns how many were copied."""
    copied = 0
    for pattern in COPY_ITEMS:
        for item in sorted(source.glob(pattern)):
            target = destination / item.name
            output.debug(f"Copying {item.name}")
            try:
                if item.is_dir() and not item.is_symlink():
                    shutil.copytree(item, target, symlinks=True, dirs_exist_ok=True)
                else:
                    shutil.copy2(item, target, follow_symlinks=False)
            except OSError as e:
                output.warning(f"Could not copy {item.name}: {e}")
                continue
            copied += 1
    return copied


def migrate_repository(
    path: str,
    force: bool = False,
    all_branches: bool = False,
    output: Optional[Output] = None
) -> Path:
    """Rebuild the repository at PATH as `<name>-worktree` with a bare `.bare` and worktrees.

    The original checkout is left untouched; a timestamped copy of it is the
    clone source, so nothing is lost if the migration stops half way.
    """
    output = output or Output()
    require_tool('git', install_hint="Install git and make sure it is on your PATH")

    repo_path = Path(path).resolve()
    if not repo_path.is_dir():
        raise ShadowTreeError(f"Directory {repo_path} does not exist")
    if not (repo_path / '.git').is_dir():
        raise ShadowTreeError(f"{repo_path} is not a Git repository")

    source = ShadowTreeRepo(str(repo_path))
    version = source.git_version()
    if tuple(version[:2]) < MIN_GIT_VERSION:
        raise ShadowTreeError(
            f"Git {'.'.join(map(str, MIN_GIT_VERSION))} or later is required "
            f"(found {'.'.join(map(str, version))})"
        )

    new_root = repo_path.parent / f"{repo_path.name}-worktree"
    if new_root.exists():
        raise ShadowTreeError(f"Target directory already exists: {new_root}")

    output.info(f"Starting migration for repository: {repo_path.name}")

    if source.has_uncommitted_changes(repo_path):
        output.warning("You have uncommitted changes:")
        output.list(source.short_status(repo_path))
        if not force:
            raise ShadowTreeError(
                "Commit or stash your changes before migrating",
                hint=f"shadowtree migrate {repo_path} --force"
            )

    branch = source.current_branch(repo_path)
    if not branch:
        raise ShadowTreeError("Could not determine current branch. Are you in detached HEAD state?")
    output.info(f"Current branch: {branch}")

    remote_url = source.remote_url()
    if remote_url:
        output.info(f"Remote URL: {remote_url}")
    else:
        output.warning(f"No remote {source.remote} found")

    backup = backup_path_for(repo_path)
    output.info(f"Creating backup at: {backup}")
    shutil.copytree(repo_path, backup, symlinks=True)

    output.info(f"Creating new repository structure at: {new_root}")
    new_root.mkdir(parents=True)
    try:
        Repo.clone_from(str(backup / '.git'), new_root / BARE_DIR_NAME, bare=True)
    except git.exc.GitCommandError as e:
        raise ShadowTreeError(f"Error cloning repository: {e.stderr.strip() if e.stderr else e}")

    write_gitdir_pointer(new_root)
    repo = ShadowTreeRepo(str(new_root))
    repo.configure_fetch_refspec()
    repo.enable_relative_worktrees()

    if remote_url:
        output.debug(f"Setting {repo.remote} back to {remote_url}")
        repo.set_remote_url(remote_url)
        if not repo.fetch():
            output.warning("Fetch failed, continuing anyway...")

    worktree_path = new_root / sanitize_branch_name(branch)
    _add_branch_worktree(repo, branch, worktree_path, output)

    if all_branches:
        for other in repo.local_branches():
            if other != branch:
                _add_branch_worktree(repo, other, new_root / sanitize_branch_name(other), output)

    output.info("Copying untracked files and directories...")
    copy_untracked_items(backup, worktree_path, output)

    output.success("Migration completed successfully!")
    output.section("Summary:")
    output.list([
        f"Original repository backed up to: {backup}",
        f"New worktree repository created at: {new_root}",
        f"Current branch worktree: {worktree_path}",
    ])
    output.section("Manual cleanup steps (after verification):")
    output.command(f"rm -rf {repo_path}")
    output.command(f"mv {new_root} {repo_path}")
    output.command(f"rm -rf {backup}")
    output.warning(f"The original repository is still at: {repo_path}")
    return new_root


def _add_branch_worktree(repo: ShadowTreeRepo, branch: str, path: Path, output: Output) -> None:
    output.info(f"Creating worktree for branch '{branch}' in folder '{path.name}'")
    repo.create_worktree(path, branch, new_branch=False)
    if repo.tracking_ref_exists(branch) and not repo.set_upstream(path, branch):
        output.debug(f"No upstream set for '{branch}'")
