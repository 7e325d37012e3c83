"""Protection evaluation: turning rule matches into decisions.

Shell commands are checked in two stages: the ordered command patterns
first, then the protected paths through the shell operation classifier.
Structured file operations (read/write/edit/delete reported by the host)
skip the text heuristics and go straight to the path classifier.

Enforcement matrix:

    level        access   write    delete
    zeroAccess   block    block    block
    readOnly     allow    block    block
    noDelete     allow    allow    block
"""

from typing import Optional, Sequence

from .models import (
    Decision,
    EffectiveRuleSet,
    Operation,
    Outcome,
    PathRule,
    ProtectionLevel,
    Violation,
)
from .paths import classify_path
from .patterns import match_command
from .shell_ops import is_delete, is_write, references_path


# Levels that forbid each structured operation
BLOCKING_LEVELS = {
    Operation.ACCESS: {ProtectionLevel.ZERO_ACCESS},
    Operation.WRITE: {ProtectionLevel.ZERO_ACCESS, ProtectionLevel.READ_ONLY},
    Operation.DELETE: {
        ProtectionLevel.ZERO_ACCESS,
        ProtectionLevel.READ_ONLY,
        ProtectionLevel.NO_DELETE,
    },
}


def _shell_violation(
    command: str, rule: PathRule, home: Optional[str]
) -> Optional[Operation]:
    if rule.level is ProtectionLevel.ZERO_ACCESS:
        if references_path(command, rule.path, home):
            return Operation.ACCESS
        return None

    if rule.level is ProtectionLevel.READ_ONLY:
        if is_write(command, rule.path, home):
            return Operation.WRITE
        if is_delete(command, rule.path, home):
            return Operation.DELETE
        return None

    if rule.level is ProtectionLevel.NO_DELETE and is_delete(command, rule.path, home):
        return Operation.DELETE
    return None


def evaluate_shell_command(
    command: str,
    rules: Sequence[PathRule],
    home: Optional[str] = None,
) -> Optional[Violation]:
    """Find the first path rule a shell command violates.

    Rules are evaluated in list order and evaluation stops at the first hit,
    so a specific zeroAccess rule listed before a broader readOnly rule wins.

    Args:
        command: Shell command string.
        rules: Ordered path rules.
        home: Home directory override for ``~`` expansion.

    Returns:
        Violation with the rule and inferred operation, or None.
    """
    if not command:
        return None

    for rule in rules:
        operation = _shell_violation(command, rule, home)
        if operation is not None:
            return Violation(rule=rule, operation=operation)
    return None


def evaluate_file_operation(
    file_path: str,
    operation: Operation,
    rules: Sequence[PathRule],
    home: Optional[str] = None,
) -> Optional[Violation]:
    """Check a structured file operation against the path rules.

    Only the first rule covering the path is considered; the operation is
    blocked when that rule's level forbids it.
    """
    rule = classify_path(file_path, rules, home)
    if rule is None or rule.level not in BLOCKING_LEVELS[operation]:
        return None
    return Violation(rule=rule, operation=operation)


def describe_violation(violation: Violation) -> str:
    """Human-readable reason for a path violation."""
    rule = violation.rule
    if violation.operation is Operation.ACCESS:
        verb = "accessed"
    elif violation.operation is Operation.WRITE:
        verb = "modified"
    else:
        verb = "deleted"
    return f'Protected path "{rule.path}" cannot be {verb} (protection level: {rule.level.value})'


def _violation_decision(violation: Violation) -> Decision:
    return Decision(
        outcome=Outcome.BLOCK,
        reason=describe_violation(violation),
        protected_path=violation.rule,
        operation=violation.operation,
    )


def check_shell_command(
    command: str,
    rule_set: EffectiveRuleSet,
    home: Optional[str] = None,
) -> Decision:
    """Full decision for a shell command: command patterns, then paths."""
    decision = match_command(command, rule_set.patterns)
    if decision.outcome is not Outcome.ALLOW:
        return decision

    violation = evaluate_shell_command(command, rule_set.paths, home)
    if violation is not None:
        return _violation_decision(violation)
    return decision


def check_file_operation(
    file_path: str,
    operation: Operation,
    rule_set: EffectiveRuleSet,
    home: Optional[str] = None,
) -> Decision:
    """Full decision for a structured file operation."""
    violation = evaluate_file_operation(file_path, operation, rule_set.paths, home)
    if violation is not None:
        return _violation_decision(violation)
    return Decision.allow()
