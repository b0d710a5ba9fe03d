"""
Core shadowtree functionality - Git repository wrapper and worktree provisioning.
"""

import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import git
from git import Repo

from .output import Output


BARE_DIR_NAME = '.bare'
DEFAULT_REMOTE = 'origin'
FETCH_REFSPEC = '+refs/heads/*:refs/remotes/{remote}/*'
FALLBACK_DEFAULT_BRANCHES = ('main', 'master')

_UNSAFE_DIR_CHARS = re.compile(r'[^A-Za-z0-9._-]')
_VALID_REPO_NAME = re.compile(r'^[A-Za-z0-9_.-]+$')


class ShadowTreeError(Exception):
    """Base exception for shadowtree operations."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint


class ConfigurationError(ShadowTreeError):
    """A configuration file exists but cannot be used."""
    pass


class DirtyWorktreeError(ShadowTreeError):
    """A worktree could not be removed because it has uncommitted changes."""

    def __init__(self, path: Path):
        super().__init__(
            f"Worktree '{path.name}' has uncommitted changes",
            hint=f"git worktree remove -f {path.name}"
        )
        self.path = path


def sanitize_branch_name(branch: str) -> str:
    """Turn a branch name into a filesystem-safe worktree directory name."""
    return _UNSAFE_DIR_CHARS.sub('-', branch)


def strip_remote_prefix(branch: str, remote: str = DEFAULT_REMOTE) -> str:
    prefix = f"{remote}/"
    return branch[len(prefix):] if branch.startswith(prefix) else branch


def validate_repo_name(name: str) -> None:
    if not _VALID_REPO_NAME.match(name):
        raise ShadowTreeError(
            f"Invalid repository name '{name}'. "
            "Use only letters, numbers, dots, hyphens, and underscores."
        )


def require_tool(tool: str, install_hint: Optional[str] = None) -> None:
    """Fail unless an external command is available on PATH."""
    if shutil.which(tool) is None:
        raise ShadowTreeError(f"Required tool '{tool}' is not installed", hint=install_hint)


def write_gitdir_pointer(root: Path) -> None:
    (root / '.git').write_text(f"gitdir: ./{BARE_DIR_NAME}\n")


@dataclass
class Worktree:
    """One entry of `git worktree list --porcelain`."""
    path: Path
    branch: Optional[str] = None
    head: Optional[str] = None
    bare: bool = False

    @property
    def name(self) -> str:
        return self.path.name


def parse_worktree_list(porcelain: str) -> List[Worktree]:
    """Parse porcelain worktree output, dropping the bare repository itself."""
    worktrees = []
    current = None
    for line in porcelain.split('\n'):
        line = line.strip()
        if line.startswith('worktree '):
            if current is not None:
                worktrees.append(current)
            current = Worktree(path=Path(line[9:]))
        elif current is None:
            continue
        elif line.startswith('HEAD '):
            current.head = line[5:]
        elif line.startswith('branch '):
            branch = line[7:]
            if branch.startswith('refs/heads/'):
                branch = branch[len('refs/heads/'):]
            current.branch = branch
        elif line == 'bare':
            current.bare = True

    if current is not None:
        worktrees.append(current)

    return [wt for wt in worktrees if not wt.bare and wt.path.name != BARE_DIR_NAME]


class ShadowTreeRepo:
    """Wrapper around a bare-repository + worktrees layout."""

    def __init__(self, repo_path: Optional[str] = None, remote: str = DEFAULT_REMOTE):
        """Initialize with repository path (defaults to current directory)."""
        self.repo_path = Path(repo_path) if repo_path else Path.cwd()
        self.remote = remote
        try:
            self.repo = Repo(self.repo_path, search_parent_directories=True)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
            raise ShadowTreeError(f"Not a Git repository: {self.repo_path}")

    @property
    def root(self) -> Path:
        """Directory holding `.bare` (or `.git`) and the worktree directories."""
        return Path(self.repo.common_dir).resolve().parent

    def _git(self, *args: str, cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
        return subprocess.run(
            ['git', *args],
            cwd=cwd or self.root,
            capture_output=True,
            text=True
        )

    def fetch(self) -> bool:
        """Refresh remote refs; failure is not fatal."""
        result = self._git('fetch', '--prune', self.remote)
        return result.returncode == 0

    def get_worktrees(self) -> List[Worktree]:
        """Get all non-bare worktrees for this repository."""
        result = self._git('worktree', 'list', '--porcelain')
        if result.returncode != 0:
            return []
        return parse_worktree_list(result.stdout)

    def find_worktree(self, dir_name: str) -> Optional[Worktree]:
        for worktree in self.get_worktrees():
            if worktree.name == dir_name:
                return worktree
        return None

    def current_branch(self, path: Path) -> Optional[str]:
        result = self._git('branch', '--show-current', cwd=path)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def remote_branch_exists(self, branch: str) -> bool:
        result = self._git('ls-remote', '--exit-code', '--heads', self.remote, branch)
        return result.returncode == 0

    def local_branch_exists(self, branch: str) -> bool:
        result = self._git('show-ref', '--verify', '--quiet', f'refs/heads/{branch}')
        return result.returncode == 0

    def tracking_ref_exists(self, branch: str) -> bool:
        result = self._git('show-ref', '--verify', '--quiet', f'refs/remotes/{self.remote}/{branch}')
        return result.returncode == 0

    def remote_branches(self) -> List[str]:
        result = self._git('branch', '-r')
        if result.returncode != 0:
            return []
        prefix = f"{self.remote}/"
        branches = []
        for line in result.stdout.split('\n'):
            line = line.strip()
            if not line or '->' in line:
                continue
            branches.append(line[len(prefix):] if line.startswith(prefix) else line)
        return branches

    def _symbolic_default_branch(self) -> Optional[str]:
        result = self._git('symbolic-ref', f'refs/remotes/{self.remote}/HEAD')
        if result.returncode != 0:
            return None
        ref = result.stdout.strip()
        prefix = f'refs/remotes/{self.remote}/'
        return ref[len(prefix):] if ref.startswith(prefix) else None

    def detect_default_branch(self) -> Optional[str]:
        """Resolve the remote's default branch, or None when nothing points at one."""
        branch = self._symbolic_default_branch()
        if branch:
            return branch

        self._git('remote', 'set-head', self.remote, '--auto')
        branch = self._symbolic_default_branch()
        if branch:
            return branch

        for candidate in FALLBACK_DEFAULT_BRANCHES:
            if self.tracking_ref_exists(candidate):
                return candidate
        return None

    def default_branch(self) -> str:
        return self.detect_default_branch() or FALLBACK_DEFAULT_BRANCHES[0]

    def configure_fetch_refspec(self) -> None:
        with self.repo.config_writer() as writer:
            writer.set_value(f'remote "{self.remote}"', 'fetch', FETCH_REFSPEC.format(remote=self.remote))

    def enable_relative_worktrees(self) -> None:
        with self.repo.config_writer() as writer:
            writer.set_value('worktree', 'useRelativePaths', 'true')

    def remote_url(self) -> Optional[str]:
        try:
            return self.repo.remote(self.remote).url
        except ValueError:
            return None

    def set_remote_url(self, url: str) -> None:
        self.repo.remote(self.remote).set_url(url)

    def local_branches(self) -> List[str]:
        return [head.name for head in self.repo.heads]

    def git_version(self) -> tuple:
        return self.repo.git.version_info

    def create_worktree(
        self,
        path: Path,
        branch: str,
        start_point: Optional[str] = None,
        new_branch: bool = True,
        track: bool = False
    ) -> None:
        """Create a new worktree."""
        args = ['worktree', 'add']
        if track:
            args.append('--track')
        if new_branch:
            args.extend(['-b', branch, str(path)])
            if start_point:
                args.append(start_point)
        else:
            args.extend([str(path), branch])

        result = self._git(*args)
        if result.returncode != 0:
            raise ShadowTreeError(f"Failed to create worktree: {result.stderr.strip()}")

    def remove_worktree(self, path: Path, force: bool = False) -> bool:
        """Remove a worktree; returns False when git refuses (e.g. local changes)."""
        args = ['worktree', 'remove']
        if force:
            args.append('--force')
        args.append(str(path))

        result = self._git(*args)
        return result.returncode == 0

    def has_uncommitted_changes(self, path: Path) -> bool:
        result = self._git('diff-index', '--quiet', 'HEAD', '--', cwd=path)
        return result.returncode != 0

    def short_status(self, path: Path) -> List[str]:
        result = self._git('status', '--short', cwd=path)
        return [line for line in result.stdout.split('\n') if line.strip()]

    def create_orphan_worktree(self, path: Path, branch: str) -> None:
        """Add a worktree on an unborn branch (for a repository without commits)."""
        result = self._git('worktree', 'add', '--orphan', '-b', branch, str(path))
        if result.returncode != 0:
            raise ShadowTreeError(f"Failed to create worktree: {result.stderr.strip()}")

    def commit_files(self, path: Path, message: str, *files: str) -> None:
        """Stage FILES in the worktree at PATH and commit them."""
        for args in (('add', *files), ('commit', '-m', message)):
            result = self._git(*args, cwd=path)
            if result.returncode != 0:
                raise ShadowTreeError(
                    f"Failed to commit: {result.stderr.strip()}",
                    hint="git config --global user.email you@example.com"
                )

    def set_upstream(self, path: Path, branch: str) -> bool:
        result = self._git('branch', f'--set-upstream-to={self.remote}/{branch}', branch, cwd=path)
        return result.returncode == 0

    def merge_default_branch(self, path: Path, branch: str, output: Output) -> bool:
        """Merge the remote default branch into a worktree, aborting on conflict."""
        default = self.default_branch()
        if default == branch:
            return True
        if not self.tracking_ref_exists(default):
            output.debug(f"No {self.remote}/{default} to merge")
            return True

        result = self._git('merge', f'{self.remote}/{default}', '--no-edit', cwd=path)
        if result.returncode == 0:
            output.info(f"Merged {self.remote}/{default}")
            return True

        self._git('merge', '--abort', cwd=path)
        output.warning(f"Merge conflicts with {self.remote}/{default}; resolve manually")
        return False

    def add_worktree(
        self,
        branch: str,
        start_point: Optional[str] = None,
        merge_default: bool = True,
        output: Optional[Output] = None
    ) -> Path:
        """Create (or recreate) the worktree for a branch and return its path."""
        output = output or Output()
        branch = strip_remote_prefix(branch, self.remote)
        if not branch:
            raise ShadowTreeError("Branch name must not be empty")

        dir_name = sanitize_branch_name(branch)
        worktree_path = self.root / dir_name
        output.info(f"Setting up worktree: {dir_name}")

        if not self.fetch():
            output.warning("Fetch failed, continuing anyway...")

        existing = self.find_worktree(dir_name)
        if existing is not None:
            if not self.remove_worktree(existing.path):
                raise DirtyWorktreeError(existing.path)
            output.debug(f"Removed existing worktree {dir_name}")
        elif worktree_path.exists():
            raise ShadowTreeError(f"Path {worktree_path} already exists and is not a worktree")

        if self.remote_branch_exists(branch):
            try:
                self.create_worktree(
                    worktree_path, branch,
                    start_point=f'{self.remote}/{branch}', track=True
                )
            except ShadowTreeError:
                # The local branch already exists
                self.create_worktree(worktree_path, branch, new_branch=False)
        else:
            output.debug(f"Creating new local branch '{branch}'")
            try:
                self.create_worktree(worktree_path, branch, start_point=start_point)
            except ShadowTreeError:
                if not self.local_branch_exists(branch):
                    raise
                self.create_worktree(worktree_path, branch, new_branch=False)

        if not self.set_upstream(worktree_path, branch):
            output.debug(f"No upstream set for '{branch}'")

        if merge_default:
            self.merge_default_branch(worktree_path, branch, output)

        return worktree_path
