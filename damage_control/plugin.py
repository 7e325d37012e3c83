"""Damage-control plugin: gates tool calls before they execute.

The plugin sits between an agent and its tool executors. For every call it
decides allow / block / ask:

- block: ``before_tool_execute`` raises, so the tool never runs.
- ask:   the match is stashed under the call id; when the host later runs its
         permission step, ``on_permission_ask`` consumes the stash and forces
         an interactive confirmation, even if a blanket allow rule exists.
         Executors wrapped with ``wrap_executor`` run the permission step
         themselves through an ask handler and refuse the call when no
         handler is configured.
"""

import itertools
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .config_loader import apply_config, build_rule_set, validate_config
from .models import (
    Decision,
    EffectiveRuleSet,
    Operation,
    Outcome,
    PathRule,
)
from .paths import DEFAULT_PROTECTED_PATHS
from .patterns import DEFAULT_PATTERNS
from .protection import check_file_operation, check_shell_command

logger = logging.getLogger(__name__)

BLOCKED_PREFIX = "DAMAGE_CONTROL_BLOCKED"

SHELL_TOOLS = {"bash", "shell", "cmd", "cli_based_tool"}
READ_TOOLS = {"read", "glob", "grep"}
WRITE_TOOLS = {"edit", "write", "create", "patch"}
DELETE_TOOLS = {"delete", "remove"}

# Argument names hosts use for the targeted path
PATH_ARG_NAMES = ("filePath", "file_path", "path")


class DamageControlError(Exception):
    """Base class for tool calls refused by damage control."""

    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(message)


class CommandBlockedError(DamageControlError):
    """Raised when a shell command matches a blocking rule."""

    def __init__(self, command: str, reason: str, matched_text: Optional[str] = None):
        self.command = command
        self.matched_text = matched_text
        message = f"{BLOCKED_PREFIX}: {reason}"
        if matched_text:
            message += f"\n\nCommand: {matched_text}"
        super().__init__(reason, message)


class PathBlockedError(DamageControlError):
    """Raised when an operation targets a protected path.

    For shell tools ``command`` holds the offending command line and
    ``file_path`` the protected path spec it touched.
    """

    def __init__(
        self,
        file_path: str,
        reason: str,
        rule: Optional[PathRule] = None,
        operation: Optional[Operation] = None,
        command: Optional[str] = None,
    ):
        self.file_path = file_path
        self.rule = rule
        self.operation = operation
        self.command = command
        message = f"{BLOCKED_PREFIX}: {reason}"
        if command:
            message += f"\n\nCommand: {command}"
        elif file_path:
            message += f"\n\nPath: {file_path}"
        super().__init__(reason, message)


class ConfirmationDeniedError(DamageControlError):
    """Raised when a call flagged for confirmation was not approved."""

    def __init__(
        self,
        tool_name: str,
        reason: str,
        subject: str = "",
        handler_missing: bool = False,
    ):
        self.tool_name = tool_name
        self.subject = subject
        self.handler_missing = handler_missing
        status = "no confirmation handler configured" if handler_missing else "confirmation denied"
        message = f"{BLOCKED_PREFIX}: {reason} ({status})"
        if subject:
            label = "Command" if tool_name in SHELL_TOOLS else "Path"
            message += f"\n\n{label}: {subject}"
        super().__init__(reason, message)


@dataclass
class PendingAsk:
    """A flagged call waiting for the host's permission step."""
    reason: str
    matched_text: str
    tool_name: str
    created_at: float = field(default_factory=time.monotonic)


class PendingAskStore:
    """Bounded map of call id -> PendingAsk with single consumption.

    Entries leave the store when consumed (``pop``), when the call finishes
    without a permission step (``discard``), when the store is full (oldest
    first), or once they are older than ``max_age`` seconds.
    """

    def __init__(self, max_entries: int = 1024, max_age: Optional[float] = 600.0):
        self._entries: 'OrderedDict[str, PendingAsk]' = OrderedDict()
        self._lock = threading.Lock()
        self.max_entries = max_entries
        self.max_age = max_age

    def put(self, call_id: str, pending: PendingAsk) -> None:
        with self._lock:
            self._evict_expired_locked()
            self._entries.pop(call_id, None)
            while self._entries and len(self._entries) >= self.max_entries:
                evicted_id, _ = self._entries.popitem(last=False)
                logger.debug("Evicted pending ask %s (store full)", evicted_id)
            self._entries[call_id] = pending

    def pop(self, call_id: str) -> Optional[PendingAsk]:
        """Consume and delete the pending ask for a call."""
        with self._lock:
            self._evict_expired_locked()
            return self._entries.pop(call_id, None)

    def discard(self, call_id: str) -> bool:
        """Drop a pending ask that will never be consumed."""
        with self._lock:
            return self._entries.pop(call_id, None) is not None

    def evict_expired(self) -> int:
        with self._lock:
            return self._evict_expired_locked()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _evict_expired_locked(self) -> int:
        if self.max_age is None:
            return 0
        cutoff = time.monotonic() - self.max_age
        expired = [cid for cid, p in self._entries.items() if p.created_at < cutoff]
        for call_id in expired:
            del self._entries[call_id]
            logger.debug("Evicted pending ask %s (expired)", call_id)
        return len(expired)

    def __contains__(self, call_id: object) -> bool:
        with self._lock:
            return call_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _path_argument(args: Dict[str, Any]) -> str:
    for name in PATH_ARG_NAMES:
        value = args.get(name)
        if isinstance(value, str) and value:
            return value
    return ""


AskHandler = Callable[[str, Dict[str, Any], Decision], bool]


class ConsoleAskHandler:
    """Asks for confirmation on the terminal.

    Input and output functions are injectable so the handler can be driven
    from tests or a non-interactive front end.
    """

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print,
    ):
        self._input = input_func
        self._output = output_func

    def __call__(self, tool_name: str, args: Dict[str, Any], decision: Decision) -> bool:
        subject = args.get("command") if tool_name in SHELL_TOOLS else _path_argument(args)

        self._output("")
        self._output("=" * 60)
        self._output(f"[damage-control] Confirmation required: {decision.reason}")
        self._output("=" * 60)
        self._output(f"Tool: {tool_name}")
        if subject:
            self._output(f"{'Command' if tool_name in SHELL_TOOLS else 'Path'}: {subject}")
        if decision.matched_text and decision.matched_text != subject:
            self._output(f"Matched: {decision.matched_text}")
        self._output("")

        try:
            response = self._input("Proceed? [y/N]: ")
        except (EOFError, KeyboardInterrupt):
            return False
        return response.strip().lower() in ("y", "yes")


class DamageControlPlugin:
    """Plugin that blocks or flags dangerous tool calls.

    Lifecycle mirrors other tool plugins: ``initialize()`` builds the
    effective rule set once, ``reload()`` rebuilds it, ``shutdown()`` drops
    it and any pending asks.
    """

    def __init__(self):
        self._rule_set: Optional[EffectiveRuleSet] = None
        self._warnings: List[str] = []
        self._config: Dict[str, Any] = {}
        self._pending = PendingAskStore()
        self._home: Optional[str] = None
        self._ask_handler: Optional[AskHandler] = None
        self._initialized = False

    @property
    def name(self) -> str:
        return "damage_control"

    @property
    def rule_set(self) -> Optional[EffectiveRuleSet]:
        return self._rule_set

    @property
    def warnings(self) -> List[str]:
        return list(self._warnings)

    @property
    def pending_asks(self) -> PendingAskStore:
        return self._pending

    @property
    def ask_handler(self) -> Optional[AskHandler]:
        return self._ask_handler

    def set_ask_handler(self, handler: Optional[AskHandler]) -> None:
        """Set the callable that confirms ask decisions in ``wrap_executor``."""
        self._ask_handler = handler

    def initialize(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration dict:
                   - project_dir: Project root for the project config file
                                  (defaults to the current directory)
                   - home: Home directory override for ``~`` expansion
                   - overlay: Inline overlay dict; replaces the config files
                   - pending_max_entries / pending_max_age: pending-ask limits
                   - ask_handler: Callable ``(tool_name, args, decision) -> bool``
                                  used by ``wrap_executor`` to confirm ask calls
        """
        self._config = dict(config or {})
        self._home = self._config.get("home")
        if "ask_handler" in self._config:
            self._ask_handler = self._config["ask_handler"]
        self._pending = PendingAskStore(
            max_entries=self._config.get("pending_max_entries", 1024),
            max_age=self._config.get("pending_max_age", 600.0),
        )
        self._build_rules()
        self._initialized = True
        logger.info(
            "Damage control initialized: %d patterns, %d protected paths",
            len(self._rule_set.patterns),
            len(self._rule_set.paths),
        )

    def reload(self) -> None:
        """Re-read configuration and rebuild the effective rule set."""
        self._build_rules()
        logger.info("Damage control configuration reloaded")

    def shutdown(self) -> None:
        self._pending.clear()
        self._rule_set = None
        self._warnings = []
        self._initialized = False

    def _build_rules(self) -> None:
        if "overlay" in self._config:
            overlay, warnings = validate_config(self._config["overlay"], "inline overlay")
            rule_set = apply_config(overlay, DEFAULT_PATTERNS, DEFAULT_PROTECTED_PATHS)
        else:
            rule_set, warnings = build_rule_set(
                project_dir=self._config.get("project_dir"),
                home=self._home,
            )
        for warning in warnings:
            logger.warning("Damage control config: %s", warning)
        self._rule_set = rule_set
        self._warnings = warnings

    def _ensure_rules(self) -> EffectiveRuleSet:
        if self._rule_set is None:
            self.initialize(self._config)
        return self._rule_set

    def check_tool_call(
        self, call_id: str, tool_name: str, args: Dict[str, Any]
    ) -> Decision:
        """Decide on a tool call and remember ask decisions.

        Args:
            call_id: Host identifier of the call, used to pair the later
                     permission step with this decision.
            tool_name: Name of the tool being called.
            args: Tool arguments (``command`` for shell tools, a path
                  argument for file tools).

        Returns:
            The Decision. Unknown tools and calls without a command/path
            are allowed.
        """
        rule_set = self._ensure_rules()

        if tool_name in SHELL_TOOLS:
            command = args.get("command")
            if not isinstance(command, str) or not command:
                return Decision.allow()
            decision = check_shell_command(command, rule_set, self._home)
            subject = command
        else:
            operation = self._operation_for(tool_name)
            file_path = _path_argument(args)
            if operation is None or not file_path:
                return Decision.allow()
            decision = check_file_operation(file_path, operation, rule_set, self._home)
            subject = file_path

        if decision.outcome is Outcome.BLOCK:
            logger.warning(
                "Blocked %s: %s (%s)", tool_name, subject[:100], decision.reason
            )
        elif decision.outcome is Outcome.ASK:
            logger.warning(
                "Flagged %s for confirmation: %s (%s)", tool_name, subject[:100], decision.reason
            )
            self._pending.put(call_id, PendingAsk(
                reason=decision.reason,
                matched_text=decision.matched_text or subject,
                tool_name=tool_name,
            ))

        return decision

    @staticmethod
    def _operation_for(tool_name: str) -> Optional[Operation]:
        if tool_name in READ_TOOLS:
            return Operation.ACCESS
        if tool_name in WRITE_TOOLS:
            return Operation.WRITE
        if tool_name in DELETE_TOOLS:
            return Operation.DELETE
        return None

    def before_tool_execute(
        self, call_id: str, tool_name: str, args: Dict[str, Any]
    ) -> Decision:
        """Hook run before a tool executes.

        Raises:
            CommandBlockedError: A shell command matched a blocking rule.
            PathBlockedError: The call violates a protected path.
        """
        decision = self.check_tool_call(call_id, tool_name, args)
        if decision.outcome is not Outcome.BLOCK:
            return decision

        if decision.protected_path is not None:
            if tool_name in SHELL_TOOLS:
                raise PathBlockedError(
                    file_path=decision.protected_path.path,
                    reason=decision.reason,
                    rule=decision.protected_path,
                    operation=decision.operation,
                    command=args.get("command", ""),
                )
            raise PathBlockedError(
                file_path=_path_argument(args),
                reason=decision.reason,
                rule=decision.protected_path,
                operation=decision.operation,
            )
        raise CommandBlockedError(
            command=args.get("command", ""),
            reason=decision.reason,
            matched_text=decision.matched_text,
        )

    def on_permission_ask(self, call_id: str) -> Optional[str]:
        """Hook run at the host's permission step.

        Returns:
            ``"ask"`` to force an interactive confirmation when the call was
            flagged earlier, otherwise None (host policy applies).
        """
        if not call_id:
            return None
        pending = self._pending.pop(call_id)
        if pending is None:
            return None
        logger.warning(
            "Forcing confirmation for %s: %s (%s)",
            pending.tool_name, pending.matched_text[:100], pending.reason,
        )
        return Outcome.ASK.value

    def on_tool_complete(self, call_id: str) -> None:
        """Hook run when a call finishes; drops any unconsumed ask."""
        if self._pending.discard(call_id):
            logger.debug("Discarded unconsumed pending ask %s", call_id)

    def confirm(
        self, call_id: str, tool_name: str, args: Dict[str, Any], decision: Decision
    ) -> bool:
        """Run the permission step for a flagged call through the ask handler.

        Returns:
            True only when a handler is configured and approves the call.
        """
        self.on_permission_ask(call_id)
        if self._ask_handler is None:
            logger.warning(
                "Refusing %s: confirmation required but no ask handler is configured (%s)",
                tool_name, decision.reason,
            )
            return False
        approved = bool(self._ask_handler(tool_name, args, decision))
        logger.info(
            "Confirmation for %s %s (%s)",
            tool_name, "approved" if approved else "denied", decision.reason,
        )
        return approved

    def wrap_executor(
        self,
        name: str,
        executor: Callable[[Dict[str, Any]], Any],
    ) -> Callable[[Dict[str, Any]], Any]:
        """Wrap an executor so blocked calls never reach it.

        Calls flagged for confirmation run only when the ask handler
        approves them; without a handler they are refused.
        """
        call_numbers = itertools.count(1)

        def wrapped(args: Dict[str, Any]) -> Any:
            call_id = f"{name}-{next(call_numbers)}"
            try:
                decision = self.before_tool_execute(call_id, name, args)
                if decision.outcome is Outcome.ASK and not self.confirm(call_id, name, args, decision):
                    subject = args.get("command") if name in SHELL_TOOLS else _path_argument(args)
                    raise ConfirmationDeniedError(
                        tool_name=name,
                        reason=decision.reason,
                        subject=subject or "",
                        handler_missing=self._ask_handler is None,
                    )
            except DamageControlError as e:
                self.on_tool_complete(call_id)
                return {"error": str(e), "_damage_control": {"reason": e.reason}}
            try:
                return executor(args)
            finally:
                self.on_tool_complete(call_id)

        return wrapped

    def wrap_all_executors(
        self,
        executors: Dict[str, Callable[[Dict[str, Any]], Any]],
    ) -> Dict[str, Callable[[Dict[str, Any]], Any]]:
        return {name: self.wrap_executor(name, executor) for name, executor in executors.items()}


def create_plugin(ask_handler: Optional[AskHandler] = None) -> DamageControlPlugin:
    """Factory function to create the damage-control plugin instance."""
    plugin = DamageControlPlugin()
    plugin.set_ask_handler(ask_handler)
    return plugin
