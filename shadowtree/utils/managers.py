"""
Package manager registry, directory classification and workspace-root detection.
"""

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Sequence, Set, Tuple

from shadowtree.core import ShadowTreeError


class RegistryError(ShadowTreeError):
    """The package manager table breaks its ordering rules."""
    pass


class Ecosystem(Enum):
    """Managers in one ecosystem can cover each other's workspace members."""
    JAVASCRIPT = 'javascript'
    RUST = 'rust'
    GO = 'go'
    PYTHON = 'python'


class Manager(Enum):
    PNPM = 'pnpm'
    BUN = 'bun'
    YARN = 'yarn'
    NPM = 'npm'
    CARGO = 'cargo'
    GO = 'go'
    PIPENV = 'pipenv'
    PIP = 'pip'
    PIP_EDITABLE = 'pip-editable'
    NPM_MANIFEST = 'npm-manifest'


@dataclass(frozen=True)
class WorkspaceSpec:
    """A file that marks a workspace root, optionally with content it must contain."""
    filename: str
    contains: Optional[str] = None


@dataclass(frozen=True)
class ManagerRule:
    manager: Manager
    patterns: Tuple[str, ...]
    command: Tuple[str, ...]
    ecosystem: Ecosystem
    workspace: Optional[WorkspaceSpec] = None
    fallback: bool = False

    @property
    def name(self) -> str:
        return self.manager.value


@dataclass(frozen=True)
class WorkspaceRoot:
    ecosystem: Ecosystem
    directory: Path


_JS_WORKSPACES = WorkspaceSpec('package.json', contains='"workspaces"')

# First match wins: lockfile rules precede manifest fallbacks.
REGISTRY: Tuple[ManagerRule, ...] = (
    ManagerRule(Manager.PNPM, ('pnpm-lock.yaml',), ('pnpm', 'install'),
                Ecosystem.JAVASCRIPT, WorkspaceSpec('pnpm-workspace.yaml')),
    ManagerRule(Manager.BUN, ('bun.lockb', 'bun.lock'), ('bun', 'install'),
                Ecosystem.JAVASCRIPT, _JS_WORKSPACES),
    ManagerRule(Manager.YARN, ('yarn.lock',), ('yarn', 'install'),
                Ecosystem.JAVASCRIPT, _JS_WORKSPACES),
    ManagerRule(Manager.NPM, ('package-lock.json',), ('npm', 'install'),
                Ecosystem.JAVASCRIPT, _JS_WORKSPACES),
    ManagerRule(Manager.CARGO, ('Cargo.toml',), ('cargo', 'fetch'),
                Ecosystem.RUST, WorkspaceSpec('Cargo.toml', contains=r'^\[workspace\]')),
    ManagerRule(Manager.GO, ('go.mod',), ('go', 'mod', 'download'),
                Ecosystem.GO, WorkspaceSpec('go.work')),
    ManagerRule(Manager.PIPENV, ('Pipfile',), ('pipenv', 'install'),
                Ecosystem.PYTHON),
    ManagerRule(Manager.PIP, ('requirements.txt',), ('pip', 'install', '-r', 'requirements.txt'),
                Ecosystem.PYTHON),
    ManagerRule(Manager.PIP_EDITABLE, ('pyproject.toml',), ('pip', 'install', '-e', '.'),
                Ecosystem.PYTHON, fallback=True),
    ManagerRule(Manager.NPM_MANIFEST, ('package.json',), ('npm', 'install'),
                Ecosystem.JAVASCRIPT, fallback=True),
)


def validate_registry(rules: Sequence[ManagerRule]) -> None:
    """Check the table is complete, unique and keeps fallbacks last per ecosystem."""
    seen = set()
    fallback_seen = set()
    for rule in rules:
        if rule.manager in seen:
            raise RegistryError(f"Duplicate package manager rule: {rule.name}")
        seen.add(rule.manager)
        if not rule.patterns:
            raise RegistryError(f"Rule {rule.name} has no detection patterns")
        if not rule.command:
            raise RegistryError(f"Rule {rule.name} has no install command")

        if rule.fallback:
            fallback_seen.add(rule.ecosystem)
        elif rule.ecosystem in fallback_seen:
            raise RegistryError(
                f"Rule {rule.name} follows a fallback rule of the "
                f"{rule.ecosystem.value} ecosystem"
            )

    missing = [manager.value for manager in Manager if manager not in seen]
    if missing:
        raise RegistryError(f"No rule for package manager(s): {', '.join(missing)}")


validate_registry(REGISTRY)

_RULES_BY_MANAGER = {rule.manager: rule for rule in REGISTRY}


def get_rule(manager: Manager) -> ManagerRule:
    return _RULES_BY_MANAGER[manager]


def _is_glob(pattern: str) -> bool:
    return any(ch in pattern for ch in '*?[')


def _find_match(directory: Path, pattern: str) -> Optional[Path]:
    """Return the file a pattern refers to in a directory (first glob match by name)."""
    if _is_glob(pattern):
        matches = sorted(directory.glob(pattern))
        return matches[0] if matches else None
    candidate = directory / pattern
    return candidate if candidate.exists() else None


def _rule_matches(directory: Path, rule: ManagerRule) -> bool:
    return any(_find_match(directory, pattern) is not None for pattern in rule.patterns)


def classify_rule(directory: Path, rules: Sequence[ManagerRule] = REGISTRY) -> Optional[ManagerRule]:
    for rule in rules:
        if _rule_matches(directory, rule):
            return rule
    return None


def classify(directory: Path, rules: Sequence[ManagerRule] = REGISTRY) -> Optional[Manager]:
    """Return the package manager that governs a directory, if any."""
    rule = classify_rule(Path(directory), rules)
    return rule.manager if rule else None


def workspace_spec_matches(directory: Path, spec: WorkspaceSpec) -> bool:
    target = _find_match(directory, spec.filename)
    if target is None or not target.is_file():
        return False
    if spec.contains is None:
        return True
    try:
        content = target.read_text(errors='replace')
    except OSError:
        return False
    return re.search(spec.contains, content, re.MULTILINE) is not None


def detect_workspace_roots(
    directory: Path,
    rules: Sequence[ManagerRule] = REGISTRY
) -> Set[WorkspaceRoot]:
    """Find the ecosystems for which a directory is a workspace root.

    Per ecosystem only one workspace spec is evaluated: the one declared by
    the first rule (in table order) that applies to the directory.
    """
    directory = Path(directory).resolve()
    roots = set()
    evaluated = set()
    for rule in rules:
        if rule.workspace is None or rule.ecosystem in evaluated:
            continue
        if not _rule_matches(directory, rule):
            continue
        evaluated.add(rule.ecosystem)
        if workspace_spec_matches(directory, rule.workspace):
            roots.add(WorkspaceRoot(rule.ecosystem, directory))
    return roots


def is_covered(directory: Path, ecosystem: Ecosystem, roots: Iterable[WorkspaceRoot]) -> bool:
    """True when a workspace root of the same ecosystem is a proper ancestor."""
    for root in roots:
        if root.ecosystem != ecosystem or root.directory == directory:
            continue
        if root.directory in directory.parents:
            return True
    return False
