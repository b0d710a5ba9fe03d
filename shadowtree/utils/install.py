"""
Recursive, workspace-aware dependency installation.
"""

import os
import subprocess
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

from shadowtree.output import Output
from shadowtree.utils.managers import (
    Manager,
    classify_rule,
    detect_workspace_roots,
    get_rule,
    is_covered,
)


PRUNED_DIRECTORIES = frozenset({
    'node_modules',
    '.git',
    'target',
    'vendor',
    'dist',
    'build',
    '.bare',
    '.next',
    '.cache',
    '__pycache__',
    '.venv',
    '.tox',
    '.mypy_cache',
})


@dataclass(frozen=True)
class InstallJob:
    directory: Path
    manager: Manager

    @property
    def command(self):
        return get_rule(self.manager).command


@dataclass
class InstallResult:
    job: InstallJob
    returncode: int
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.returncode == 0


def iter_directories(base_directory: Path) -> Iterator[Path]:
    """Walk a tree in sorted pre-order, skipping the pruned directory names."""
    for root, dirs, _files in os.walk(base_directory):
        dirs[:] = sorted(d for d in dirs if d not in PRUNED_DIRECTORIES)
        yield Path(root)


def plan_installs(base_directory: Path) -> List[InstallJob]:
    """Work out the minimal set of install jobs for a tree."""
    base = Path(base_directory).resolve()
    roots = detect_workspace_roots(base)
    jobs = []

    for directory in iter_directories(base):
        rule = classify_rule(directory)
        if rule is None:
            continue

        if directory != base:
            if is_covered(directory, rule.ecosystem, roots):
                continue
            # Nested monorepos are only probed once they become install targets
            roots |= detect_workspace_roots(directory)

        jobs.append(InstallJob(directory, rule.manager))

    return jobs


def run_install(job: InstallJob) -> InstallResult:
    """Run one install command in its own directory."""
    try:
        result = subprocess.run(
            list(job.command),
            cwd=job.directory,
            capture_output=True,
            text=True
        )
    except FileNotFoundError:
        return InstallResult(job, 127, f"{job.command[0]} is not installed")
    except OSError as e:
        return InstallResult(job, 1, str(e))

    error = None
    if result.returncode != 0:
        lines = (result.stderr or result.stdout or '').strip().splitlines()
        error = lines[-1] if lines else f"exit code {result.returncode}"
    return InstallResult(job, result.returncode, error)


def _relative(directory: Path, base: Optional[Path]) -> str:
    if base is None:
        return str(directory)
    if directory == base:
        return '.'
    try:
        return str(directory.relative_to(base))
    except ValueError:
        return str(directory)


def execute_installs(
    jobs: List[InstallJob],
    output: Optional[Output] = None,
    base_directory: Optional[Path] = None
) -> int:
    """Run install jobs (concurrently when there are several); return the failure count."""
    output = output or Output()
    base = Path(base_directory).resolve() if base_directory else None

    if not jobs:
        output.debug("No dependencies to install")
        return 0

    for job in jobs:
        output.info(f"Installing dependencies ({job.manager.value}) in {_relative(job.directory, base)}...")

    if len(jobs) == 1:
        results = [run_install(jobs[0])]
    else:
        results = []
        with ThreadPoolExecutor(max_workers=len(jobs)) as executor:
            futures = {executor.submit(run_install, job): job for job in jobs}
            for future in as_completed(futures):
                results.append(future.result())

    failures = [result for result in results if not result.success]
    for result in failures:
        where = _relative(result.job.directory, base)
        output.warning(f"{result.job.manager.value} install failed in {where}: {result.error}")

    if len(jobs) > 1:
        if failures:
            output.warning(f"{len(failures)} of {len(jobs)} installs failed")
        else:
            output.debug(f"All {len(jobs)} installs finished")

    return len(failures)


def install_dependencies(
    base_directory: Path,
    output: Optional[Output] = None,
    dry_run: bool = False
) -> int:
    """Plan and run installs for a tree; return the failure count."""
    output = output or Output()
    jobs = plan_installs(base_directory)
    if dry_run:
        base = Path(base_directory).resolve()
        if not jobs:
            output.info("No dependencies to install")
        for job in jobs:
            output.info(f"{job.manager.value}: {_relative(job.directory, base)} ({' '.join(job.command)})")
        return 0
    return execute_installs(jobs, output, base_directory)
