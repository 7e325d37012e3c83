"""Configuration loading, validation and overlay application.

Users customise the built-in rules with a JSON overlay read from two places:

- global:  ``$DAMAGE_CONTROL_CONFIG_PATH`` or ``~/.config/damage-control/config.json``
- project: ``<project>/.damage-control/config.json``

Each overlay may ``add``, ``remove`` and ``override`` command patterns (keyed
by reason) and protected paths (keyed by path)::

    {
        "$schema": "...",
        "patterns": {
            "add": [{"pattern": "make\\\\s+clean", "reason": "make clean", "action": "ask"}],
            "remove": ["npm unpublish"],
            "override": {"SQL DROP TABLE": "ask"}
        },
        "paths": {
            "add": [{"path": "secrets/", "level": "zeroAccess"}],
            "remove": ["dist/"],
            "override": {"build/": "none", ".git/": "readOnly"}
        }
    }

Validation never raises: invalid fragments are dropped and reported as
warning strings, and everything else is kept.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import (
    LEVEL_NONE,
    Action,
    CommandRule,
    EffectiveRuleSet,
    PathRule,
    ProtectionLevel,
)
from .paths import DEFAULT_PROTECTED_PATHS, HOME_ENV_VAR
from .patterns import DEFAULT_PATTERNS, compile_pattern

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DAMAGE_CONTROL_CONFIG_PATH"
CONFIG_FILENAME = "config.json"
PROJECT_CONFIG_DIR = ".damage-control"

VALID_ACTIONS = {action.value: action for action in Action}
VALID_LEVELS = {level.value: level for level in ProtectionLevel}
KNOWN_KEYS = ("patterns", "paths", "$schema")


@dataclass
class PatternOverlay:
    """Changes to the command pattern list."""
    add: List[CommandRule] = field(default_factory=list)
    remove: List[str] = field(default_factory=list)
    override: Dict[str, Action] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.add:
            result["add"] = [rule.to_dict() for rule in self.add]
        if self.remove:
            result["remove"] = list(self.remove)
        if self.override:
            result["override"] = {k: v.value for k, v in self.override.items()}
        return result


@dataclass
class PathOverlay:
    """Changes to the protected path list.

    An override value of None unprotects the path (``"none"`` in JSON).
    """
    add: List[PathRule] = field(default_factory=list)
    remove: List[str] = field(default_factory=list)
    override: Dict[str, Optional[ProtectionLevel]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.add:
            result["add"] = [rule.to_dict() for rule in self.add]
        if self.remove:
            result["remove"] = list(self.remove)
        if self.override:
            result["override"] = {
                k: (v.value if v is not None else LEVEL_NONE)
                for k, v in self.override.items()
            }
        return result


@dataclass
class ConfigOverlay:
    """A validated overlay from one config source, or several merged ones."""
    patterns: Optional[PatternOverlay] = None
    paths: Optional[PathOverlay] = None

    def is_empty(self) -> bool:
        return not self.to_dict()

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.patterns is not None and self.patterns.to_dict():
            result["patterns"] = self.patterns.to_dict()
        if self.paths is not None and self.paths.to_dict():
            result["paths"] = self.paths.to_dict()
        return result


def _show(value: Any) -> str:
    """Render an offending config value for a warning message."""
    try:
        return json.dumps(value, default=str)
    except ValueError:
        return repr(value)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_config(raw: Any, source: str) -> Tuple[ConfigOverlay, List[str]]:
    """Validate a decoded config value and build an overlay from it.

    Args:
        raw: Value decoded from the config file (any JSON type).
        source: Label used to prefix warnings, usually the file path.

    Returns:
        Tuple of (overlay, list_of_warnings). Invalid fragments are left out
        of the overlay and described in the warnings.
    """
    warnings: List[str] = []
    config = ConfigOverlay()

    if not isinstance(raw, dict):
        warnings.append(f"{source}: config is not an object, ignoring")
        return config, warnings

    if "patterns" in raw:
        section = raw["patterns"]
        if not isinstance(section, dict):
            warnings.append(f'{source}: "patterns" is not an object, ignoring')
        else:
            config.patterns = _validate_pattern_section(section, source, warnings)

    if "paths" in raw:
        section = raw["paths"]
        if not isinstance(section, dict):
            warnings.append(f'{source}: "paths" is not an object, ignoring')
        else:
            config.paths = _validate_path_section(section, source, warnings)

    for key in raw:
        if key not in KNOWN_KEYS:
            warnings.append(f'{source}: unknown key "{key}", ignoring')

    return config, warnings


def _validate_pattern_section(
    section: Dict[str, Any], source: str, warnings: List[str]
) -> PatternOverlay:
    overlay = PatternOverlay()

    entries = _get_array(section, "add", "patterns", source, warnings)
    seen_reasons = set()
    for i, entry in enumerate(entries):
        rule = _parse_pattern_entry(entry, f'"patterns.add[{i}]"', source, warnings)
        if rule is None:
            continue
        if rule.reason in seen_reasons:
            warnings.append(
                f'{source}: "patterns.add[{i}]" repeats reason "{rule.reason}", skipping'
            )
            continue
        seen_reasons.add(rule.reason)
        overlay.add.append(rule)

    overlay.remove = _get_string_list(section, "remove", "patterns", source, warnings)

    for key, value in _get_object(section, "override", "patterns", source, warnings).items():
        if isinstance(value, str) and value in VALID_ACTIONS:
            overlay.override[key] = VALID_ACTIONS[value]
        else:
            warnings.append(
                f'{source}: "patterns.override[{json.dumps(key)}]" '
                f'has invalid action {_show(value)}, skipping'
            )

    return overlay


def _parse_pattern_entry(
    entry: Any, label: str, source: str, warnings: List[str]
) -> Optional[CommandRule]:
    if (
        not isinstance(entry, dict)
        or not isinstance(entry.get("pattern"), str)
        or not isinstance(entry.get("reason"), str)
        or not isinstance(entry.get("action"), str)
        or entry["action"] not in VALID_ACTIONS
    ):
        warnings.append(
            f"{source}: {label} is invalid (need pattern, reason, action), "
            f"skipping: {_show(entry)}"
        )
        return None

    try:
        compile_pattern(entry["pattern"])
    except re.error as e:
        warnings.append(
            f"{source}: {label} has invalid regex {_show(entry['pattern'])} ({e}), skipping"
        )
        return None

    return CommandRule(
        pattern=entry["pattern"],
        reason=entry["reason"],
        action=VALID_ACTIONS[entry["action"]],
    )


def _validate_path_section(
    section: Dict[str, Any], source: str, warnings: List[str]
) -> PathOverlay:
    overlay = PathOverlay()

    entries = _get_array(section, "add", "paths", source, warnings)
    seen_paths = set()
    for i, entry in enumerate(entries):
        # "none" is only meaningful as an override
        if (
            not isinstance(entry, dict)
            or not isinstance(entry.get("path"), str)
            or not isinstance(entry.get("level"), str)
            or entry["level"] not in VALID_LEVELS
        ):
            warnings.append(
                f'{source}: "paths.add[{i}]" is invalid (need path, level), '
                f"skipping: {_show(entry)}"
            )
            continue
        if entry["path"] in seen_paths:
            warnings.append(
                f'{source}: "paths.add[{i}]" repeats path "{entry["path"]}", skipping'
            )
            continue
        seen_paths.add(entry["path"])
        overlay.add.append(PathRule(path=entry["path"], level=VALID_LEVELS[entry["level"]]))

    overlay.remove = _get_string_list(section, "remove", "paths", source, warnings)

    for key, value in _get_object(section, "override", "paths", source, warnings).items():
        if value == LEVEL_NONE:
            overlay.override[key] = None
        elif isinstance(value, str) and value in VALID_LEVELS:
            overlay.override[key] = VALID_LEVELS[value]
        else:
            warnings.append(
                f'{source}: "paths.override[{json.dumps(key)}]" '
                f"has invalid level {_show(value)}, skipping"
            )

    return overlay


def _get_array(
    section: Dict[str, Any], key: str, prefix: str, source: str, warnings: List[str]
) -> List[Any]:
    if key not in section:
        return []
    value = section[key]
    if not isinstance(value, list):
        warnings.append(f'{source}: "{prefix}.{key}" is not an array, ignoring')
        return []
    return value


def _get_object(
    section: Dict[str, Any], key: str, prefix: str, source: str, warnings: List[str]
) -> Dict[str, Any]:
    if key not in section:
        return {}
    value = section[key]
    if not isinstance(value, dict):
        warnings.append(f'{source}: "{prefix}.{key}" is not an object, ignoring')
        return {}
    return value


def _get_string_list(
    section: Dict[str, Any], key: str, prefix: str, source: str, warnings: List[str]
) -> List[str]:
    valid: List[str] = []
    for i, value in enumerate(_get_array(section, key, prefix, source, warnings)):
        if isinstance(value, str):
            valid.append(value)
        else:
            warnings.append(
                f'{source}: "{prefix}.{key}[{i}]" is not a string, skipping: {_show(value)}'
            )
    return valid


# ---------------------------------------------------------------------------
# Merging and application
# ---------------------------------------------------------------------------

def merge_configs(global_config: ConfigOverlay, project_config: ConfigOverlay) -> ConfigOverlay:
    """Merge the global and project overlays.

    ``add`` and ``remove`` lists are concatenated with global entries first;
    ``override`` maps are merged with project values winning.
    """
    merged = ConfigOverlay()

    gp, pp = global_config.patterns, project_config.patterns
    if gp is not None or pp is not None:
        gp = gp or PatternOverlay()
        pp = pp or PatternOverlay()
        merged.patterns = PatternOverlay(
            add=[*gp.add, *pp.add],
            remove=[*gp.remove, *pp.remove],
            override={**gp.override, **pp.override},
        )

    gpaths, ppaths = global_config.paths, project_config.paths
    if gpaths is not None or ppaths is not None:
        gpaths = gpaths or PathOverlay()
        ppaths = ppaths or PathOverlay()
        merged.paths = PathOverlay(
            add=[*gpaths.add, *ppaths.add],
            remove=[*gpaths.remove, *ppaths.remove],
            override={**gpaths.override, **ppaths.override},
        )

    return merged


def apply_config(
    config: ConfigOverlay,
    default_patterns: Sequence[CommandRule],
    default_paths: Sequence[PathRule],
) -> EffectiveRuleSet:
    """Apply an overlay on top of the default rule lists.

    Each list is processed remove -> override -> add: entries named in
    ``remove`` are dropped, overrides replace the action/level of what is
    left (a path override of ``none`` drops the entry), and ``add`` entries
    are appended in order. Unknown keys are ignored.

    The inputs are never modified; new lists are always returned.
    """
    patterns = list(default_patterns)
    pc = config.patterns
    if pc is not None:
        if pc.remove:
            removed = set(pc.remove)
            patterns = [p for p in patterns if p.reason not in removed]
        if pc.override:
            patterns = [
                CommandRule(p.pattern, p.reason, pc.override[p.reason])
                if p.reason in pc.override else p
                for p in patterns
            ]
        patterns.extend(pc.add)

    paths = list(default_paths)
    pathc = config.paths
    if pathc is not None:
        if pathc.remove:
            removed = set(pathc.remove)
            paths = [p for p in paths if p.path not in removed]
        if pathc.override:
            overridden: List[PathRule] = []
            for p in paths:
                if p.path not in pathc.override:
                    overridden.append(p)
                    continue
                level = pathc.override[p.path]
                if level is not None:
                    overridden.append(PathRule(p.path, level))
            paths = overridden
        paths.extend(pathc.add)

    return EffectiveRuleSet(patterns=patterns, paths=paths)


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------

def global_config_path(home: Optional[str] = None, env_var: str = CONFIG_ENV_VAR) -> Path:
    """Location of the global config file."""
    override = os.environ.get(env_var)
    if override:
        return Path(override)
    if home is None:
        home = os.environ.get(HOME_ENV_VAR, "")
    return Path(home) / ".config" / "damage-control" / CONFIG_FILENAME


def project_config_path(project_dir: str) -> Path:
    """Location of the project config file."""
    return Path(project_dir) / PROJECT_CONFIG_DIR / CONFIG_FILENAME


def _read_json_file(path: Path) -> Optional[Any]:
    """Decode a JSON file, or return None if it is missing or unreadable.

    Parse failures are treated like a missing file.
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.debug("Ignoring unreadable config %s: %s", path, e)
        return None


def _load_source(path: Path, warnings: List[str]) -> ConfigOverlay:
    raw = _read_json_file(path)
    if raw is None:
        return ConfigOverlay()
    logger.debug("Loaded config overlay from %s", path)
    config, source_warnings = validate_config(raw, str(path))
    warnings.extend(source_warnings)
    return config


def load_config(
    project_dir: str,
    home: Optional[str] = None,
    env_var: str = CONFIG_ENV_VAR,
) -> Tuple[ConfigOverlay, List[str]]:
    """Load the global and project config files and merge them.

    Both files are optional; with neither present the result is an empty
    overlay and no warnings.

    Args:
        project_dir: Project root holding ``.damage-control/config.json``.
        home: Home directory override (defaults to HOME).
        env_var: Environment variable that relocates the global config.

    Returns:
        Tuple of (merged_overlay, warnings).
    """
    warnings: List[str] = []
    global_config = _load_source(global_config_path(home, env_var), warnings)
    project_config = _load_source(project_config_path(project_dir), warnings)
    return merge_configs(global_config, project_config), warnings


def build_rule_set(
    project_dir: Optional[str] = None,
    home: Optional[str] = None,
    default_patterns: Sequence[CommandRule] = DEFAULT_PATTERNS,
    default_paths: Sequence[PathRule] = DEFAULT_PROTECTED_PATHS,
) -> Tuple[EffectiveRuleSet, List[str]]:
    """Load config for a project and apply it to the defaults.

    Returns:
        Tuple of (effective_rule_set, warnings).
    """
    config, warnings = load_config(project_dir or os.getcwd(), home)
    return apply_config(config, default_patterns, default_paths), warnings
