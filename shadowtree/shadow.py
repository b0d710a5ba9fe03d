"""
Shadow workspaces: per-ticket directories of symlinks into repository worktrees.

Layout of a workspace for ticket T under the workspace root R:

    R/<location>/T/
        .shadow-workspace          marker (JSON)
        T.code-workspace           editor descriptor (JSON)
        .vscode/launch.json        optional launch configuration
        <repo>/<worktree>          relative symlink to R/<repo>/<worktree>
        <always-included name>     relative symlink to a shared file or folder

The worktrees own the real content; the workspace owns its marker,
descriptor and the copies made for files matching the sync patterns.
"""

import json
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .config import ShadowConfig, relocate_launch_config
from .core import ShadowTreeError
from .output import Output
from .utils.files import sync_matching_files


MARKER_FILENAME = '.shadow-workspace'
MARKER_TYPE = 'shadow-workspace'
MARKER_DESCRIPTION = (
    'This is a shadow workspace for ticket-based development. '
    'Folders are symlinks to actual worktrees.'
)
DESCRIPTOR_SUFFIX = '.code-workspace'
LAUNCH_FILE = Path('.vscode') / 'launch.json'


def validate_ticket_id(ticket_id: str) -> None:
    if not ticket_id or ticket_id in ('.', '..') or '/' in ticket_id or os.sep in ticket_id:
        raise ShadowTreeError(f"Invalid ticket id '{ticket_id}'")


@dataclass(frozen=True)
class RepoEntry:
    """One repository worktree projected into a workspace."""
    repo_name: str
    worktree_name: str
    path: Path

    @property
    def label(self) -> str:
        return f"{self.repo_name}: {self.worktree_name}"

    @property
    def relative_link(self) -> str:
        return f"{self.repo_name}/{self.worktree_name}"

    @classmethod
    def parse(cls, spec: str, root_dir: Path) -> 'RepoEntry':
        """Parse `repo:worktree`; the worktree lives at <root>/<repo>/<worktree>."""
        repo_name, sep, worktree_name = spec.partition(':')
        repo_name, worktree_name = repo_name.strip(), worktree_name.strip()
        if not sep or not repo_name or not worktree_name:
            raise ShadowTreeError(
                f"Invalid workspace entry '{spec}'",
                hint="Use REPO:WORKTREE, e.g. backend:main"
            )
        for part in (repo_name, worktree_name):
            if part in ('.', '..') or '/' in part:
                raise ShadowTreeError(f"Invalid workspace entry '{spec}'")
        return cls(repo_name, worktree_name, Path(root_dir) / repo_name / worktree_name)


@dataclass
class AlwaysIncludeResult:
    linked: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)


@dataclass
class LinkInfo:
    name: str
    target: str
    broken: bool = False


@dataclass
class ShadowWorkspaceInfo:
    ticket_id: str
    path: Path
    entries: List[LinkInfo]
    shared: List[LinkInfo]
    files: List[str]
    marker: Optional[Dict[str, Any]] = None


def _relative_target(target: Path, link_dir: Path) -> str:
    return os.path.relpath(os.path.abspath(target), os.path.abspath(link_dir))


class ShadowWorkspaceManager:
    """Creates, updates and removes shadow workspaces under a workspace root."""

    def __init__(
        self,
        root_dir: Path,
        config: Optional[ShadowConfig] = None,
        output: Optional[Output] = None
    ):
        self.root_dir = Path(root_dir).resolve()
        self.config = config or ShadowConfig()
        self.output = output or Output()

    @property
    def shadow_dir(self) -> Path:
        return self.root_dir / self.config.location

    def workspace_path(self, ticket_id: str) -> Path:
        validate_ticket_id(ticket_id)
        return self.shadow_dir / ticket_id

    def descriptor_path(self, ticket_id: str) -> Path:
        return self.workspace_path(ticket_id) / f"{ticket_id}{DESCRIPTOR_SUFFIX}"

    def exists(self, ticket_id: str) -> bool:
        return self.workspace_path(ticket_id).is_dir()

    def list_workspaces(self) -> List[str]:
        if not self.shadow_dir.is_dir():
            return []
        return sorted(
            entry.name for entry in self.shadow_dir.iterdir()
            if entry.is_dir() and not entry.is_symlink()
        )

    # Lifecycle

    def create(
        self,
        ticket_id: str,
        entries: Sequence[RepoEntry],
        launch_config: Optional[Dict[str, Any]] = None
    ) -> Path:
        """Build a workspace from scratch (existing links at the same paths are replaced)."""
        shadow_path = self.workspace_path(ticket_id)
        shadow_path.mkdir(parents=True, exist_ok=True)
        self.write_marker(ticket_id)

        for entry in entries:
            if self.link_entry(shadow_path, entry):
                self.sync_entry(shadow_path, entry)

        self.link_always_included(shadow_path)
        self.write_descriptor(ticket_id, entries, launch_config)
        return shadow_path

    def update(
        self,
        ticket_id: str,
        entries: Sequence[RepoEntry],
        launch_config: Optional[Dict[str, Any]] = None
    ) -> Path:
        """Reconcile an existing workspace with a new set of entries."""
        if not self.exists(ticket_id):
            self.output.debug("Creating new shadow workspace...")
            return self.create(ticket_id, entries, launch_config)

        shadow_path = self.workspace_path(ticket_id)
        existing = self.existing_links(shadow_path)

        requested: Dict[str, set] = {}
        for entry in entries:
            requested.setdefault(entry.repo_name, set()).add(entry.worktree_name)

        for repo_name, worktree_names in existing.items():
            repo_dir = shadow_path / repo_name
            keep = requested.get(repo_name, set())
            for worktree_name in sorted(worktree_names - keep):
                (repo_dir / worktree_name).unlink()
                self.output.debug(f"Removed symlink: {repo_name}/{worktree_name}")
            if not keep and not any(repo_dir.iterdir()):
                repo_dir.rmdir()
                self.output.debug(f"Removed empty repo directory: {repo_name}")

        for entry in entries:
            present = entry.worktree_name in existing.get(entry.repo_name, set())
            linked = True
            if not present or not self._points_at(shadow_path, entry):
                linked = self.link_entry(shadow_path, entry)
            if linked:
                self.sync_entry(shadow_path, entry)

        if not (shadow_path / MARKER_FILENAME).exists():
            self.write_marker(ticket_id)
        self.link_always_included(shadow_path)
        self.write_descriptor(ticket_id, entries, launch_config)
        return shadow_path

    def remove(self, ticket_id: str) -> bool:
        """Delete a workspace; symlinked worktrees are unlinked, never followed."""
        shadow_path = self.workspace_path(ticket_id)
        if not os.path.lexists(shadow_path):
            return True
        try:
            shutil.rmtree(shadow_path)
        except OSError as e:
            self.output.warning(f"Failed to remove shadow workspace {ticket_id}: {e}")
            return False
        self.output.debug(f"Removed shadow workspace: {ticket_id}")
        return True

    # Repository entries

    def link_entry(self, shadow_path: Path, entry: RepoEntry) -> bool:
        """Create <shadow>/<repo>/<worktree> as a relative symlink; failures are soft."""
        repo_dir = shadow_path / entry.repo_name
        link_path = repo_dir / entry.worktree_name

        if not entry.path.is_dir():
            self.output.warning(
                f"Failed to create symlink for {entry.relative_link}: "
                f"{entry.path} is not a directory"
            )
            return False

        try:
            repo_dir.mkdir(parents=True, exist_ok=True)
            if link_path.is_symlink() or link_path.is_file():
                link_path.unlink()
            elif link_path.exists():
                raise OSError(f"{link_path} exists and is not a symlink")
            os.symlink(_relative_target(entry.path, repo_dir), link_path, target_is_directory=True)
        except OSError as e:
            self.output.warning(f"Failed to create symlink for {entry.relative_link}: {e}")
            return False

        self.output.debug(f"Created symlink: {entry.relative_link} -> {entry.path}")
        return True

    def sync_entry(self, shadow_path: Path, entry: RepoEntry) -> int:
        """Copy sync-pattern files from the real worktree into the linked location."""
        link_path = shadow_path / entry.repo_name / entry.worktree_name
        try:
            source = link_path.resolve(strict=True)
        except (OSError, RuntimeError) as e:
            self.output.warning(f"Failed to resolve symlink {entry.relative_link}: {e}")
            return 0
        return sync_matching_files(
            source, link_path, self.config.sync_patterns,
            self.output, label=entry.relative_link
        )

    def _points_at(self, shadow_path: Path, entry: RepoEntry) -> bool:
        link_path = shadow_path / entry.repo_name / entry.worktree_name
        try:
            return link_path.resolve(strict=True) == entry.path.resolve()
        except (OSError, RuntimeError):
            return False

    def existing_links(self, shadow_path: Path) -> Dict[str, set]:
        """Map repository directory names to the worktree symlinks they contain."""
        existing = {}
        if not shadow_path.is_dir():
            return existing
        for repo_dir in sorted(shadow_path.iterdir()):
            if repo_dir.name.startswith('.') or repo_dir.is_symlink() or not repo_dir.is_dir():
                continue
            existing[repo_dir.name] = {
                child.name for child in repo_dir.iterdir() if child.is_symlink()
            }
        return existing

    def read_entries(self, ticket_id: str) -> List[RepoEntry]:
        """Recover the entries of a workspace from its symlinks."""
        shadow_path = self.workspace_path(ticket_id)
        entries = []
        for repo_name, worktree_names in self.existing_links(shadow_path).items():
            repo_dir = shadow_path / repo_name
            for worktree_name in sorted(worktree_names):
                target = Path(os.readlink(repo_dir / worktree_name))
                if not target.is_absolute():
                    target = Path(os.path.normpath(repo_dir / target))
                entries.append(RepoEntry(repo_name, worktree_name, target))
        return entries

    # Always-included items

    def _resolve_shared(self, item: str) -> Path:
        path = Path(item).expanduser()
        return path if path.is_absolute() else self.root_dir / path

    def link_always_included(self, shadow_path: Path) -> AlwaysIncludeResult:
        """Symlink shared folders and files at the workspace root, never overwriting."""
        result = AlwaysIncludeResult()
        always = self.config.always_include
        items = [(folder, True) for folder in always.folders]
        items += [(file, False) for file in always.files]

        for item, is_folder in items:
            source = self._resolve_shared(item)
            kind = 'folder' if is_folder else 'file'
            link_name = source.name
            link_path = shadow_path / link_name

            if not source.exists():
                self.output.warning(f"Cannot include {kind} '{item}': not found")
                result.missing.append(item)
                continue
            if os.path.lexists(link_path):
                self.output.debug(f"Skipping {link_name} - already exists in workspace")
                result.skipped.append(link_name)
                continue

            try:
                os.symlink(_relative_target(source, shadow_path), link_path, target_is_directory=is_folder)
            except OSError as e:
                self.output.warning(f"Cannot include {kind} '{item}': {e}")
                result.missing.append(item)
                continue
            self.output.debug(f"Added always-included {kind}: {link_name}")
            result.linked.append(link_name)

        return result

    # Generated files

    def write_marker(self, ticket_id: str) -> Path:
        marker = {
            'type': MARKER_TYPE,
            'ticketId': ticket_id,
            'created': datetime.now(timezone.utc).isoformat(),
            'description': MARKER_DESCRIPTION,
        }
        marker_path = self.workspace_path(ticket_id) / MARKER_FILENAME
        marker_path.write_text(json.dumps(marker, indent=2))
        return marker_path

    def read_marker(self, ticket_id: str) -> Optional[Dict[str, Any]]:
        marker_path = self.workspace_path(ticket_id) / MARKER_FILENAME
        if not marker_path.is_file():
            return None
        try:
            return json.loads(marker_path.read_text())
        except (OSError, json.JSONDecodeError):
            return None

    def build_descriptor(
        self,
        ticket_id: str,
        launch_config: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Editor workspace with the workspace root as its only folder."""
        descriptor = {
            'folders': [{'path': '.', 'name': ticket_id}],
            'settings': {
                'window.title': f"{ticket_id} (Shadow): ${{rootName}}",
                'files.exclude': {
                    '**/node_modules': True,
                    '**/.bare': True,
                    MARKER_FILENAME: True,
                },
                'git.scanRepositories': ['*/*'],
                'git.repositoryScanMaxDepth': 2,
                'git.autoRepositoryDetection': True,
                'git.detectSubmodules': True,
                'git.followSymlinks': True,
            },
        }
        if launch_config:
            descriptor['launch'] = launch_config
        return descriptor

    def write_descriptor(
        self,
        ticket_id: str,
        entries: Sequence[RepoEntry],
        launch_config: Optional[Dict[str, Any]] = None
    ) -> Path:
        if launch_config:
            folder_paths = {entry.label: entry.relative_link for entry in entries}
            launch_config = relocate_launch_config(launch_config, folder_paths)
            launch_path = self.workspace_path(ticket_id) / LAUNCH_FILE
            launch_path.parent.mkdir(parents=True, exist_ok=True)
            launch_path.write_text(json.dumps(launch_config, indent=2))

        descriptor_path = self.descriptor_path(ticket_id)
        descriptor_path.write_text(json.dumps(self.build_descriptor(ticket_id, launch_config), indent=2))
        return descriptor_path

    # Inspection

    def info(self, ticket_id: str) -> Optional[ShadowWorkspaceInfo]:
        shadow_path = self.workspace_path(ticket_id)
        if not shadow_path.is_dir():
            return None

        entries, shared, files = [], [], []
        existing = self.existing_links(shadow_path)
        for repo_name, worktree_names in existing.items():
            for worktree_name in sorted(worktree_names):
                entries.append(self._link_info(shadow_path / repo_name / worktree_name,
                                               f"{repo_name}/{worktree_name}"))

        for child in sorted(shadow_path.iterdir()):
            if child.is_symlink():
                shared.append(self._link_info(child, child.name))
            elif child.is_file():
                files.append(child.name)

        return ShadowWorkspaceInfo(
            ticket_id=ticket_id,
            path=shadow_path,
            entries=entries,
            shared=shared,
            files=files,
            marker=self.read_marker(ticket_id),
        )

    @staticmethod
    def _link_info(link_path: Path, name: str) -> LinkInfo:
        target = os.readlink(link_path)
        return LinkInfo(name=name, target=target, broken=not link_path.exists())
