"""
Command for cloning a repository into the bare + worktrees layout.
"""

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


def directory_from_url(url: str) -> str:
    """Repository name from a clone URL: its basename without `.git`."""
    name = url.rstrip('/').split('/')[-1].split(':')[-1]
    if name.endswith('.git'):
        name = name[:-4]
    return name


def clone_repository(
    url: str,
    directory: Optional[str] = None,
    output: Optional[Output] = None
) -> Path:
    """Bare-clone URL and check out its default branch as the first worktree."""
    output = output or Output()
    require_tool('git', install_hint="Install git and make sure it is on your PATH")

    target_dir = Path(directory or directory_from_url(url)).resolve()
    if not target_dir.name:
        raise ShadowTreeError(f"Cannot derive a directory name from {url}")
    if target_dir.exists():
        raise ShadowTreeError(f"Target directory already exists: {target_dir}")

    output.info(f"Cloning {url} into {target_dir}")
    target_dir.mkdir(parents=True)
    try:
        Repo.clone_from(url, target_dir / BARE_DIR_NAME, bare=True)
    except git.exc.GitCommandError as e:
        raise ShadowTreeError(f"Error cloning repository: {e.stderr.strip() if e.stderr else e}")

    write_gitdir_pointer(target_dir)
    repo = ShadowTreeRepo(str(target_dir))
    repo.configure_fetch_refspec()

    output.debug(f"Fetching {repo.remote}")
    if not repo.fetch():
        output.warning("Fetch failed, continuing anyway...")

    branch = repo.detect_default_branch()
    if branch is None:
        output.error("Could not determine the default branch. Available branches:")
        output.list(repo.remote_branches())
        raise ShadowTreeError("Could not determine the default branch")

    worktree_path = target_dir / sanitize_branch_name(branch)
    output.debug(f"Creating worktree for {branch}")
    if repo.local_branch_exists(branch):
        repo.create_worktree(worktree_path, branch, new_branch=False)
        if not repo.set_upstream(worktree_path, branch):
            output.debug(f"No upstream set for '{branch}'")
    else:
        repo.create_worktree(
            worktree_path, branch,
            start_point=f'{repo.remote}/{branch}', track=True
        )

    output.success(f"Cloned repository to {target_dir}")
    output.info("Next steps:")
    output.command(f"cd {worktree_path}")
    output.command("shadowtree worktree add <branch-name>")
    return target_dir
