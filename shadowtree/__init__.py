"""
shadowtree - A Python CLI tool for bare-repository worktree development.

shadowtree provisions per-branch worktrees (with dependency installation)
and builds per-ticket "shadow workspaces" that symlink worktrees from
several repositories into one isolated directory.
"""

__version__ = "0.1.0"
__author__ = "shadowtree"
