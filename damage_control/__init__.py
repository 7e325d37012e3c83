"""Damage control: a command and file-access policy engine for agent tools.

Decides whether a shell command or file operation should be allowed,
blocked, or confirmed by the user, based on:
- An ordered list of dangerous command patterns (first match wins)
- A tiered list of protected paths (zeroAccess, readOnly, noDelete)
- Optional global and project config overlays that add, remove or
  override the built-in rules
"""

# Plugin kind identifier for registry discovery
PLUGIN_KIND = "tool"

from .models import (
    Action,
    CommandRule,
    Decision,
    EffectiveRuleSet,
    Operation,
    Outcome,
    PathRule,
    PatternMatch,
    ProtectionLevel,
    Violation,
)
from .patterns import DEFAULT_PATTERNS, find_match, match_command
from .paths import DEFAULT_PROTECTED_PATHS, classify_path, expand_home
from .shell_ops import is_delete, is_write, references_path
from .protection import (
    check_file_operation,
    check_shell_command,
    evaluate_file_operation,
    evaluate_shell_command,
)
from .config_loader import (
    ConfigOverlay,
    PathOverlay,
    PatternOverlay,
    apply_config,
    build_rule_set,
    load_config,
    merge_configs,
    validate_config,
)
from .plugin import (
    CommandBlockedError,
    ConfirmationDeniedError,
    ConsoleAskHandler,
    DamageControlError,
    DamageControlPlugin,
    PathBlockedError,
    PendingAskStore,
    create_plugin,
)

__all__ = [
    # Models
    'Action',
    'CommandRule',
    'Decision',
    'EffectiveRuleSet',
    'Operation',
    'Outcome',
    'PathRule',
    'PatternMatch',
    'ProtectionLevel',
    'Violation',
    # Matching
    'DEFAULT_PATTERNS',
    'find_match',
    'match_command',
    'DEFAULT_PROTECTED_PATHS',
    'classify_path',
    'expand_home',
    'references_path',
    'is_write',
    'is_delete',
    # Evaluation
    'check_shell_command',
    'check_file_operation',
    'evaluate_shell_command',
    'evaluate_file_operation',
    # Config
    'ConfigOverlay',
    'PatternOverlay',
    'PathOverlay',
    'validate_config',
    'merge_configs',
    'apply_config',
    'load_config',
    'build_rule_set',
    # Plugin
    'DamageControlPlugin',
    'DamageControlError',
    'CommandBlockedError',
    'PathBlockedError',
    'ConfirmationDeniedError',
    'ConsoleAskHandler',
    'PendingAskStore',
    'create_plugin',
]
