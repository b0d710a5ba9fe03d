"""
Utility modules for shadowtree.
"""

from .managers import (
    Ecosystem,
    Manager,
    ManagerRule,
    RegistryError,
    REGISTRY,
    WorkspaceRoot,
    classify,
    classify_rule,
    detect_workspace_roots,
    is_covered
)

from .install import (
    InstallJob,
    InstallResult,
    plan_installs,
    execute_installs,
    install_dependencies
)

from .files import (
    is_regex_pattern,
    copy_env_files,
    copy_included_files,
    sync_matching_files
)

from .source import (
    activity_timestamp,
    find_latest_worktree,
    find_source_worktree
)

__all__ = [
    # package manager registry
    'Ecosystem',
    'Manager',
    'ManagerRule',
    'RegistryError',
    'REGISTRY',
    'WorkspaceRoot',
    'classify',
    'classify_rule',
    'detect_workspace_roots',
    'is_covered',

    # install planning
    'InstallJob',
    'InstallResult',
    'plan_installs',
    'execute_installs',
    'install_dependencies',

    # file projection
    'is_regex_pattern',
    'copy_env_files',
    'copy_included_files',
    'sync_matching_files',

    # source worktree resolution
    'activity_timestamp',
    'find_latest_worktree',
    'find_source_worktree'
]
