"""
Command for installing dependencies across a directory tree.
"""

from pathlib import Path
from typing import Optional

from shadowtree.core import ShadowTreeError
from shadowtree.output import Output
from shadowtree.utils.install import install_dependencies


def install_command(
    directory: Optional[str] = None,
    dry_run: bool = False,
    output: Optional[Output] = None
) -> int:
    """Install dependencies under a directory; returns the number of failed installs."""
    output = output or Output()
    base = Path(directory).resolve() if directory else Path.cwd()
    if not base.is_dir():
        raise ShadowTreeError(f"Not a directory: {base}")

    if dry_run:
        output.info(f"Install plan for {base}:")
    failures = install_dependencies(base, output, dry_run=dry_run)
    if not dry_run and not failures:
        output.success("Dependencies installed")
    return failures
