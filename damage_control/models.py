"""Data models for the damage-control rule set.

Command rules and path rules are plain, immutable records. Their identity
keys (``reason`` for command rules, ``path`` for path rules) are what the
config overlay uses to remove or override them, so rule lists are always kept
as ordered sequences rather than keyed mappings.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Action(Enum):
    """What happens when a command rule matches."""
    BLOCK = "block"
    ASK = "ask"


class ProtectionLevel(Enum):
    """Enforcement tier of a protected path."""
    ZERO_ACCESS = "zeroAccess"  # no access at all
    READ_ONLY = "readOnly"      # read allowed, write/delete blocked
    NO_DELETE = "noDelete"      # read/write allowed, delete blocked


# Override-only sentinel: unprotects a path instead of changing its level
LEVEL_NONE = "none"


class Operation(Enum):
    """Kind of operation performed against a protected path."""
    ACCESS = "access"
    WRITE = "write"
    DELETE = "delete"


class Outcome(Enum):
    """Final outcome of a decision."""
    ALLOW = "allow"
    BLOCK = "block"
    ASK = "ask"


class PathSpecKind(Enum):
    """Shape of a path rule's spec, which selects the matching strategy."""
    GLOB = "glob"
    DIRECTORY = "directory"
    LITERAL = "literal"


@dataclass(frozen=True)
class CommandRule:
    """A dangerous-command rule.

    Attributes:
        pattern: Regular expression source, matched case-insensitively.
        reason: Human-readable reason; also the rule's identity key.
        action: Whether a match blocks outright or asks for confirmation.
    """
    pattern: str
    reason: str
    action: Action = Action.BLOCK

    def to_dict(self) -> Dict[str, str]:
        return {
            "pattern": self.pattern,
            "reason": self.reason,
            "action": self.action.value,
        }


@dataclass(frozen=True)
class PathRule:
    """A protected-path rule.

    Attributes:
        path: Literal path, directory (trailing ``/``) or glob (contains ``*``).
        level: Protection tier enforced for matching paths.
    """
    path: str
    level: ProtectionLevel = ProtectionLevel.ZERO_ACCESS

    @property
    def kind(self) -> PathSpecKind:
        if "*" in self.path:
            return PathSpecKind.GLOB
        if self.path.endswith("/"):
            return PathSpecKind.DIRECTORY
        return PathSpecKind.LITERAL

    @property
    def is_glob(self) -> bool:
        return self.kind is PathSpecKind.GLOB

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "level": self.level.value}


@dataclass
class PatternMatch:
    """The first command rule that matched, plus the text it matched."""
    rule: CommandRule
    matched_text: str


@dataclass
class Violation:
    """A protected path rule violated by an operation."""
    rule: PathRule
    operation: Operation


@dataclass
class Decision:
    """Outcome of evaluating a single tool call.

    ``matched_text`` is set for command-rule decisions; ``protected_path``
    and ``operation`` are set for path-rule decisions.
    """
    outcome: Outcome
    reason: str
    matched_text: Optional[str] = None
    protected_path: Optional[PathRule] = None
    operation: Optional[Operation] = None

    @classmethod
    def allow(cls) -> 'Decision':
        return cls(outcome=Outcome.ALLOW, reason="No rule matched")

    @property
    def is_blocked(self) -> bool:
        return self.outcome is Outcome.BLOCK

    @property
    def needs_confirmation(self) -> bool:
        return self.outcome is Outcome.ASK

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "outcome": self.outcome.value,
            "reason": self.reason,
        }
        if self.matched_text is not None:
            result["matchedText"] = self.matched_text
        if self.protected_path is not None:
            result["protectedPath"] = self.protected_path.to_dict()
        if self.operation is not None:
            result["operation"] = self.operation.value
        return result


@dataclass
class EffectiveRuleSet:
    """Ordered command and path rules after config overlays were applied.

    Built once per session and treated as read-only afterwards; a reload
    builds a new instance.
    """
    patterns: List[CommandRule] = field(default_factory=list)
    paths: List[PathRule] = field(default_factory=list)
