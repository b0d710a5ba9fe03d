"""
Commands for per-ticket shadow workspaces.
"""

import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from shadowtree.config import (
    WorkspaceConfig,
    generate_launch_config,
    get_shadow_config,
    load_workspace_config
)
from shadowtree.core import ShadowTreeError, ShadowTreeRepo, sanitize_branch_name
from shadowtree.output import Output
from shadowtree.shadow import RepoEntry, ShadowWorkspaceManager


ROOT_DIR_ENV = 'APP_DIR'
DEFAULT_EDITOR = 'code'


def resolve_root_dir(directory: Optional[str] = None) -> Path:
    """Workspace root: explicit directory, else $APP_DIR, else the current directory."""
    root = directory or os.environ.get(ROOT_DIR_ENV) or os.getcwd()
    root_dir = Path(root).expanduser().resolve()
    if not root_dir.is_dir():
        raise ShadowTreeError(f"Workspace root {root_dir} is not a directory")
    return root_dir


def load_manager(
    root_dir: Path,
    output: Output
) -> Tuple[ShadowWorkspaceManager, Optional[WorkspaceConfig]]:
    config = load_workspace_config(root_dir)
    if config is None:
        output.debug("No tw.config.json found, using defaults")
    return ShadowWorkspaceManager(root_dir, get_shadow_config(config), output), config


def resolve_entries(
    specs: Iterable[str],
    root_dir: Path,
    create_missing: bool = False,
    output: Optional[Output] = None
) -> List[RepoEntry]:
    """Turn REPO:WORKTREE arguments into entries, provisioning missing worktrees on request."""
    output = output or Output()
    entries = []
    for spec in specs:
        repo_name, sep, worktree = spec.partition(':')
        if create_missing and sep:
            entry = RepoEntry.parse(f"{repo_name}:{sanitize_branch_name(worktree.strip())}", root_dir)
        else:
            entry = RepoEntry.parse(spec, root_dir)

        if not entry.path.is_dir():
            if not create_missing:
                output.warning(f"Worktree not found: {entry.path}")
                output.command(f"shadowtree worktree add {worktree.strip()}  (in {root_dir / entry.repo_name})")
                continue
            output.info(f"Creating worktree {worktree.strip()} in {entry.repo_name}")
            repo = ShadowTreeRepo(str(root_dir / entry.repo_name))
            path = repo.add_worktree(worktree.strip(), output=output)
            entry = RepoEntry(entry.repo_name, path.name, path)

        entries.append(entry)
    return entries


def parse_drop(spec: str) -> Tuple[str, Optional[str]]:
    repo_name, _, worktree = spec.partition(':')
    repo_name, worktree = repo_name.strip(), worktree.strip()
    if not repo_name:
        raise ShadowTreeError(f"Invalid drop '{spec}'", hint="Use REPO or REPO:WORKTREE")
    return repo_name, worktree or None


def merge_entries(
    existing: Sequence[RepoEntry],
    added: Sequence[RepoEntry],
    drops: Sequence[str] = ()
) -> List[RepoEntry]:
    """Existing entries minus drops, plus added ones (added entries win on conflict)."""
    dropped = [parse_drop(spec) for spec in drops]

    def is_dropped(entry: RepoEntry) -> bool:
        return any(
            entry.repo_name == repo and (worktree is None or entry.worktree_name == worktree)
            for repo, worktree in dropped
        )

    added_keys = {(entry.repo_name, entry.worktree_name) for entry in added}
    merged = [
        entry for entry in existing
        if not is_dropped(entry) and (entry.repo_name, entry.worktree_name) not in added_keys
    ]
    return merged + list(added)


def _report(manager: ShadowWorkspaceManager, ticket_id: str, entries: Sequence[RepoEntry], output: Output):
    output.info(f"Location: {manager.workspace_path(ticket_id)}")
    if entries:
        output.info("Repositories:")
        output.list(entry.label for entry in entries)
    output.info("Open it with:")
    output.command(f"shadowtree shadow open {ticket_id}")


def _require_enabled(manager: ShadowWorkspaceManager) -> None:
    if not manager.config.enabled:
        raise ShadowTreeError(
            "Shadow workspaces are disabled",
            hint='Set "shadow": {"enabled": true} in tw.config.json'
        )


def shadow_new_command(
    ticket_id: str,
    specs: Sequence[str],
    directory: Optional[str] = None,
    force: bool = False,
    create_missing: bool = False,
    output: Optional[Output] = None
) -> Path:
    output = output or Output()
    root_dir = resolve_root_dir(directory)
    manager, config = load_manager(root_dir, output)
    _require_enabled(manager)

    if manager.exists(ticket_id):
        if not force:
            raise ShadowTreeError(
                f"Workspace {ticket_id} already exists",
                hint=f"shadowtree shadow update {ticket_id} ...  (or pass --force to recreate it)"
            )
        output.debug(f"Removing existing workspace {ticket_id}")
        if not manager.remove(ticket_id):
            raise ShadowTreeError(f"Could not remove existing workspace {ticket_id}")

    entries = resolve_entries(specs, root_dir, create_missing, output)
    if not entries:
        raise ShadowTreeError("No worktrees to add to the workspace")

    output.info(f"Creating shadow workspace {ticket_id}...")
    launch = generate_launch_config(config, [entry.label for entry in entries])
    path = manager.create(ticket_id, entries, launch)

    output.success(f"Shadow workspace {ticket_id} created")
    _report(manager, ticket_id, entries, output)
    return path


def shadow_update_command(
    ticket_id: str,
    specs: Sequence[str] = (),
    drops: Sequence[str] = (),
    directory: Optional[str] = None,
    create_missing: bool = False,
    output: Optional[Output] = None
) -> Path:
    output = output or Output()
    root_dir = resolve_root_dir(directory)
    manager, config = load_manager(root_dir, output)
    _require_enabled(manager)

    existing = manager.read_entries(ticket_id) if manager.exists(ticket_id) else []
    added = resolve_entries(specs, root_dir, create_missing, output)
    entries = merge_entries(existing, added, drops)

    output.info(f"Updating shadow workspace {ticket_id}...")
    launch = generate_launch_config(config, [entry.label for entry in entries])
    path = manager.update(ticket_id, entries, launch)

    output.success(f"Shadow workspace {ticket_id} updated")
    _report(manager, ticket_id, entries, output)
    return path


def shadow_remove_command(
    ticket_id: str,
    directory: Optional[str] = None,
    output: Optional[Output] = None
) -> bool:
    output = output or Output()
    manager, _ = load_manager(resolve_root_dir(directory), output)

    if not manager.exists(ticket_id):
        output.info(f"Workspace {ticket_id} does not exist")
        return True

    if not manager.remove(ticket_id):
        raise ShadowTreeError(f"Failed to remove workspace {ticket_id}")
    output.success(f"Shadow workspace {ticket_id} removed")
    return True


def shadow_list_command(directory: Optional[str] = None, output: Optional[Output] = None) -> List[str]:
    output = output or Output()
    manager, _ = load_manager(resolve_root_dir(directory), output)
    tickets = manager.list_workspaces()

    if not tickets:
        output.info("No workspaces found.")
        output.info("Create a new workspace with:")
        output.command("shadowtree shadow new <ticket-id> <repo>:<worktree>")
        return tickets

    output.info(f"Shadow workspaces ({len(tickets)}):")
    for ticket_id in tickets:
        info = manager.info(ticket_id)
        if info is None:
            output.warning(f"{ticket_id}: could not read workspace info")
            continue
        output.info(f"\n📁 {ticket_id}")
        output.debug(f"Location: {info.path}")
        output.list(
            f"{link.name}{' (broken link)' if link.broken else ''}"
            for link in info.entries
        )
        broken_shared = [link.name for link in info.shared if link.broken]
        if broken_shared:
            output.warning(f"Broken links: {', '.join(broken_shared)}")
        if info.files:
            output.debug(f"Files: {', '.join(info.files)}")
    return tickets


def shadow_open_command(
    ticket_id: str,
    directory: Optional[str] = None,
    editor: str = DEFAULT_EDITOR,
    output: Optional[Output] = None
) -> Path:
    output = output or Output()
    manager, _ = load_manager(resolve_root_dir(directory), output)

    if not manager.exists(ticket_id):
        raise ShadowTreeError(
            f"Workspace {ticket_id} does not exist",
            hint=f"shadowtree shadow new {ticket_id} <repo>:<worktree>"
        )

    editor_args = shlex.split(editor) or [DEFAULT_EDITOR]
    if shutil.which(editor_args[0]) is None:
        raise ShadowTreeError(
            f"Editor '{editor_args[0]}' not found",
            hint=f"Ensure '{editor_args[0]}' is installed and on your PATH, or pass --editor"
        )

    target = manager.descriptor_path(ticket_id)
    if not target.is_file():
        target = manager.workspace_path(ticket_id)
        output.warning(f"Workspace file not found, opening folder instead: {target}")
    else:
        output.info(f"Opening workspace {ticket_id}...")
    output.debug(f"Path: {target}")

    result = subprocess.run(editor_args + [str(target)], capture_output=True, text=True)
    if result.returncode != 0:
        raise ShadowTreeError(f"Failed to open editor: {result.stderr.strip()}")

    output.success("Workspace opened")
    return target
