"""
Command for creating a new bare repository with a main worktree.
"""

from pathlib import Path
from typing import Optional

from git import Repo

from shadowtree.core import (
    BARE_DIR_NAME,
    DEFAULT_REMOTE,
    FETCH_REFSPEC,
    ShadowTreeError,
    ShadowTreeRepo,
    require_tool,
    validate_repo_name,
    write_gitdir_pointer
)
from shadowtree.output import Output


MAIN_BRANCH = 'main'


def init_repository(
    name: str,
    parent_dir: Optional[Path] = None,
    remote_url: Optional[str] = None,
    output: Optional[Output] = None
) -> Path:
    """Create NAME/.bare, the .git pointer and a `main` worktree with a first commit."""
    output = output or Output()
    validate_repo_name(name)
    require_tool('git', install_hint="Install git and make sure it is on your PATH")

    root = Path(parent_dir or Path.cwd()).resolve() / name
    if root.exists():
        raise ShadowTreeError(f"Directory {root} already exists")

    output.info(f"Creating bare repository in {root}")
    root.mkdir(parents=True)
    bare = Repo.init(root / BARE_DIR_NAME, bare=True, initial_branch=MAIN_BRANCH)

    if remote_url:
        remote = bare.create_remote(DEFAULT_REMOTE, remote_url)
        with remote.config_writer as writer:
            writer.set('fetch', FETCH_REFSPEC.format(remote=DEFAULT_REMOTE))
        output.debug(f"Added remote {DEFAULT_REMOTE}: {remote_url}")

    write_gitdir_pointer(root)
    repo = ShadowTreeRepo(str(root))

    main_path = root / MAIN_BRANCH
    output.debug(f"Creating {MAIN_BRANCH} worktree")
    try:
        repo.create_worktree(main_path, MAIN_BRANCH)
    except ShadowTreeError:
        # Some git versions need --orphan in a repository without commits
        repo.create_orphan_worktree(main_path, MAIN_BRANCH)

    (main_path / 'README.md').write_text(f"# {name}\n")
    repo.commit_files(main_path, 'Initial commit', 'README.md')

    output.success(f"Repository {name} created")
    output.info("Next steps:")
    output.command(f"cd {root}")
    output.command("shadowtree worktree add <branch-name>")
    return root
