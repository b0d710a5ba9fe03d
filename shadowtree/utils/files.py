"""
Copying env files and pattern-selected files between worktrees.
"""

import fnmatch
import os
import re
import shutil
from pathlib import Path
from typing import List, Optional, Pattern, Sequence

from shadowtree.output import Output


ENV_FILE_PREFIX = '.env'
REGEX_METACHARACTERS = frozenset('^$.*[]{}()?+\\|')
SYNC_SKIPPED_DIRECTORIES = frozenset({'node_modules'})


def is_regex_pattern(pattern: str) -> bool:
    """A pattern is treated as a regex iff it contains a regex metacharacter."""
    return any(ch in REGEX_METACHARACTERS for ch in pattern)


def compile_patterns(patterns: Sequence[str], output: Optional[Output] = None) -> List[Pattern]:
    """Compile regex patterns, warning about (and dropping) invalid ones."""
    output = output or Output()
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            output.warning(f"Invalid pattern '{pattern}': {e}")
    return compiled


def _copy_file(source: Path, target: Path, label: str, output: Output) -> bool:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, target)
    except (OSError, shutil.Error) as e:
        output.warning(f"Failed to copy {label}: {e}")
        return False
    return True


def copy_env_files(source: Path, dest: Path, output: Optional[Output] = None) -> int:
    """Copy top-level `.env*` files from one worktree into another."""
    output = output or Output()
    source, dest = Path(source), Path(dest)
    if not source.is_dir():
        return 0

    copied = 0
    for entry in sorted(source.iterdir()):
        if not entry.name.startswith(ENV_FILE_PREFIX) or not entry.is_file():
            continue
        if _copy_file(entry, dest / entry.name, entry.name, output):
            output.debug(f"Copied: {entry.name}")
            copied += 1

    if copied:
        output.info(f"Copied {copied} .env file(s)")
    return copied


def _iter_files(directory: Path, skip_hidden_dirs: bool = False):
    for root, dirs, files in os.walk(directory):
        if skip_hidden_dirs:
            dirs[:] = [
                d for d in dirs
                if not d.startswith('.') and d not in SYNC_SKIPPED_DIRECTORIES
            ]
        dirs.sort()
        for name in sorted(files):
            path = Path(root) / name
            if path.is_file():
                yield path


def find_included_files(source: Path, pattern: str, output: Optional[Output] = None) -> List[Path]:
    """Files anywhere under source whose basename matches an include pattern."""
    source = Path(source)
    if is_regex_pattern(pattern):
        compiled = compile_patterns([pattern], output)
        if not compiled:
            return []
        regex = compiled[0]
        return [path for path in _iter_files(source) if regex.search(path.name)]
    return [path for path in _iter_files(source) if fnmatch.fnmatchcase(path.name, pattern)]


def copy_included_files(
    source: Path,
    dest: Path,
    patterns: Sequence[str],
    output: Optional[Output] = None
) -> int:
    """Copy every file matching the include patterns, keeping relative paths."""
    output = output or Output()
    source, dest = Path(source), Path(dest)
    if not patterns or not source.is_dir():
        return 0

    copied = 0
    for pattern in patterns:
        if not pattern:
            continue
        kind = 'regex' if is_regex_pattern(pattern) else 'pattern'
        for path in find_included_files(source, pattern, output):
            relative = path.relative_to(source)
            if _copy_file(path, dest / relative, str(relative), output):
                output.debug(f"Copied: {relative} ({kind}: {pattern})")
                copied += 1

    if copied:
        output.info(f"Copied {copied} additional file(s) from config")
    return copied


def sync_matching_files(
    source: Path,
    target: Path,
    patterns: Sequence[str],
    output: Optional[Output] = None,
    label: Optional[str] = None
) -> int:
    """Copy files whose basename matches a sync regex from source into target.

    Hidden directories and node_modules are not searched. Files are always
    overwritten; a target that already is the source file is left alone.
    """
    output = output or Output()
    source, target = Path(source), Path(target)
    label = label or source.name
    regexes = compile_patterns(patterns, output)
    if not regexes or not source.is_dir():
        return 0

    synced = 0
    for path in _iter_files(source, skip_hidden_dirs=True):
        if not any(regex.search(path.name) for regex in regexes):
            continue
        relative = path.relative_to(source)
        destination = target / relative
        if destination.exists() and os.path.samefile(path, destination):
            output.debug(f"Present: {label}/{relative}")
            synced += 1
            continue
        if _copy_file(path, destination, f"{label}/{relative}", output):
            output.debug(f"Copied: {label}/{relative}")
            synced += 1

    return synced
