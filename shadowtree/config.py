"""
Configuration files: workspace `tw.config.json` and per-repository `.gitworktree`.
"""

import copy
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .core import ConfigurationError
from .output import Output


CONFIG_FILENAME = 'tw.config.json'
WORKTREE_CONFIG_FILENAME = '.gitworktree'
DEFAULT_LOCATION = '.ticket-workspaces'
DEFAULT_SYNC_PATTERNS = [r'^\.env.*', r'^\.nvmrc$', r'^\.ruby-version$']
LATEST_SOURCE = 'latest'
LAUNCH_VERSION = '0.2.0'

_PLACEHOLDER = re.compile(r'\{\{(\w+)\}\}')
_FOLDER_REFERENCE = re.compile(r'\$\{workspaceFolder:([^}]+)\}')


@dataclass
class AlwaysInclude:
    folders: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)


@dataclass
class ShadowConfig:
    enabled: bool = True
    sync_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_SYNC_PATTERNS))
    location: str = DEFAULT_LOCATION
    default_to_shadow: bool = True
    always_include: AlwaysInclude = field(default_factory=AlwaysInclude)


@dataclass
class WorkspaceConfig:
    shadow: ShadowConfig
    launch_configs: Optional[Dict[str, Any]] = None


@dataclass
class WorktreeConfig:
    """Contents of a repository's `.gitworktree` file."""
    source: Optional[str] = None
    include: List[str] = field(default_factory=list)


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def parse_shadow_config(raw: Dict[str, Any]) -> ShadowConfig:
    """Merge a raw `shadow` section with the defaults."""
    always = raw.get('alwaysInclude') or {}
    if not isinstance(always, dict):
        always = {}
    return ShadowConfig(
        enabled=raw.get('enabled') is not False,
        sync_patterns=_string_list(raw.get('syncPatterns')) or list(DEFAULT_SYNC_PATTERNS),
        location=raw.get('location') or DEFAULT_LOCATION,
        default_to_shadow=raw.get('defaultToShadow') is not False,
        always_include=AlwaysInclude(
            folders=_string_list(always.get('folders')),
            files=_string_list(always.get('files')),
        ),
    )


def load_workspace_config(root_dir: Path) -> Optional[WorkspaceConfig]:
    """Load `tw.config.json`; None when the file is absent or has no shadow section."""
    config_file = Path(root_dir) / CONFIG_FILENAME
    if not config_file.exists():
        return None

    try:
        with open(config_file, 'r') as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {config_file}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Cannot read {config_file}: {e}")

    if not isinstance(raw, dict) or not isinstance(raw.get('shadow'), dict):
        return None

    launch = raw.get('launchConfigs')
    return WorkspaceConfig(
        shadow=parse_shadow_config(raw['shadow']),
        launch_configs=launch if isinstance(launch, dict) else None,
    )


def get_shadow_config(config: Optional[WorkspaceConfig]) -> ShadowConfig:
    return config.shadow if config else ShadowConfig()


def load_worktree_config(repo_root: Path, output: Optional[Output] = None) -> WorktreeConfig:
    """Load `.gitworktree`; missing or unreadable files give the defaults."""
    output = output or Output()
    config_file = Path(repo_root) / WORKTREE_CONFIG_FILENAME
    if not config_file.exists():
        return WorktreeConfig()

    try:
        with open(config_file, 'r') as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        output.debug(f"Ignoring {config_file}: {e}")
        return WorktreeConfig()

    if not isinstance(raw, dict):
        return WorktreeConfig()

    source = raw.get('source')
    return WorktreeConfig(
        source=source if isinstance(source, str) and source else None,
        include=_string_list(raw.get('include')),
    )


def replace_placeholders(value: Any, replacements: Dict[str, str]) -> Any:
    """Substitute `{{name}}` placeholders in every string of a nested structure."""
    if isinstance(value, str):
        return _PLACEHOLDER.sub(lambda m: replacements.get(m.group(1), m.group(0)), value)
    if isinstance(value, list):
        return [replace_placeholders(item, replacements) for item in value]
    if isinstance(value, dict):
        return {key: replace_placeholders(item, replacements) for key, item in value.items()}
    return value


def generate_launch_config(
    config: Optional[WorkspaceConfig],
    labels: Sequence[str]
) -> Optional[Dict[str, Any]]:
    """Build a launch configuration for the repositories present in a workspace.

    `labels` are entry labels of the form "repo: worktree".
    """
    if config is None or not config.launch_configs:
        return None

    folder_names = {}
    for label in labels:
        repo_name = label.split(':', 1)[0].strip()
        folder_names[repo_name] = label

    repositories = config.launch_configs.get('repositories') or {}
    configurations = []
    for repo_name, repo_config in repositories.items():
        if repo_name not in folder_names or not isinstance(repo_config, dict):
            continue
        for template in repo_config.get('configs') or []:
            configurations.append(
                replace_placeholders(copy.deepcopy(template), {'folderName': folder_names[repo_name]})
            )

    compounds = []
    for compound in config.launch_configs.get('compounds') or []:
        if not isinstance(compound, dict):
            continue
        required = compound.get('requires') or []
        if all(repo in folder_names for repo in required):
            compounds.append({key: value for key, value in compound.items() if key != 'requires'})

    if not configurations and not compounds:
        return None

    launch = {'version': LAUNCH_VERSION, 'configurations': configurations}
    if compounds:
        launch['compounds'] = compounds
    return launch


def relocate_launch_config(launch: Dict[str, Any], folder_paths: Dict[str, str]) -> Dict[str, Any]:
    """Point `${workspaceFolder:<label>}` cwds at the entry's directory in the workspace.

    `folder_paths` maps entry labels to their path relative to the workspace root.
    """
    relocated = copy.deepcopy(launch)
    for configuration in relocated.get('configurations', []):
        cwd = configuration.get('cwd')
        if not isinstance(cwd, str):
            continue
        match = _FOLDER_REFERENCE.search(cwd)
        if not match:
            continue
        reference = match.group(1)
        for label, relative in folder_paths.items():
            if reference == label or reference in label:
                configuration['cwd'] = cwd.replace(match.group(0), f"${{workspaceFolder}}/{relative}")
                break
    return relocated
