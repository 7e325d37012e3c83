"""Protected path rules and the path classifier.

Two matching strategies are selected by the shape of a rule's path spec:

- Glob specs (containing ``*``) are filename patterns and are matched against
  the basename of the candidate path only.
- Literal and directory specs match when the spec, with or without ``~``
  expanded, occurs anywhere inside the candidate path. This is deliberately
  permissive: ``dist/`` protects ``/any/project/dist/index.js``.
"""

import os
import re
from functools import lru_cache
from typing import List, Optional, Sequence

from .models import PathRule, ProtectionLevel


ZERO = ProtectionLevel.ZERO_ACCESS
READ_ONLY = ProtectionLevel.READ_ONLY
NO_DELETE = ProtectionLevel.NO_DELETE

# Stricter, more specific entries must precede broader ones:
# /etc/passwd (zeroAccess) is listed before /etc/ (readOnly).
DEFAULT_PROTECTED_PATHS: List[PathRule] = [
    # -- Zero access: credentials and secrets --
    PathRule("~/.ssh", ZERO),
    PathRule("~/.aws", ZERO),
    PathRule("~/.gnupg", ZERO),
    PathRule("~/.config/gcloud", ZERO),
    PathRule("~/.azure", ZERO),
    PathRule("~/.kube", ZERO),
    PathRule("~/.docker", ZERO),
    PathRule("/etc/passwd", ZERO),
    PathRule("/etc/shadow", ZERO),
    PathRule("/etc/sudoers", ZERO),
    PathRule("~/.config/damage-control", ZERO),
    PathRule("~/.netrc", ZERO),
    PathRule("~/.npmrc", ZERO),
    PathRule("~/.pypirc", ZERO),
    PathRule("~/.git-credentials", ZERO),
    PathRule("*.pem", ZERO),
    PathRule("*.key", ZERO),
    PathRule("*.p12", ZERO),
    PathRule(".env*", ZERO),

    # -- Read only: system config, shell startup files, generated output --
    PathRule("/etc/", READ_ONLY),
    PathRule("/usr/", READ_ONLY),
    PathRule("/boot/", READ_ONLY),
    PathRule("~/.bashrc", READ_ONLY),
    PathRule("~/.bash_profile", READ_ONLY),
    PathRule("~/.zshrc", READ_ONLY),
    PathRule("~/.profile", READ_ONLY),
    PathRule("package-lock.json", READ_ONLY),
    PathRule("*.lock", READ_ONLY),
    PathRule("dist/", READ_ONLY),
    PathRule("build/", READ_ONLY),
    PathRule("node_modules/", READ_ONLY),

    # -- No delete: project metadata --
    PathRule(".git/", NO_DELETE),
    PathRule(".gitignore", NO_DELETE),
    PathRule(".damage-control/", NO_DELETE),
    PathRule("LICENSE", NO_DELETE),
    PathRule("README.md", NO_DELETE),
    PathRule("Dockerfile", NO_DELETE),
]

HOME_ENV_VAR = "HOME"


def expand_home(path: str, home: Optional[str] = None) -> str:
    """Replace a leading ``~`` with the home directory.

    Args:
        path: Path that may start with ``~``.
        home: Home directory to use. Defaults to the HOME environment
              variable; when that is unset ``~`` becomes an empty string.

    Returns:
        The expanded path, or the path unchanged if it has no leading ``~``.
    """
    if not path.startswith("~"):
        return path
    if home is None:
        home = os.environ.get(HOME_ENV_VAR, "")
    return home + path[1:]


def basename(path: str) -> str:
    """Final segment of a path, ignoring trailing slashes."""
    return path.rstrip("/").rsplit("/", 1)[-1]


@lru_cache(maxsize=256)
def glob_to_regex(spec: str) -> 're.Pattern[str]':
    """Translate a ``*``-only glob into an anchored regular expression.

    Every other character is matched literally; ``?``, ``[...]`` and ``**``
    have no special meaning.
    """
    return re.compile("^" + ".*".join(re.escape(part) for part in spec.split("*")) + "$")


def spec_forms(spec: str, home: Optional[str] = None) -> List[str]:
    """Substring forms of a literal/directory spec: expanded first, then raw."""
    expanded = expand_home(spec, home)
    if expanded == spec:
        return [spec]
    # An empty expansion would match everything; only the raw form is kept
    return [expanded, spec] if expanded else [spec]


def path_matches(file_path: str, rule: PathRule, home: Optional[str] = None) -> bool:
    """Check whether a file path falls under a single path rule."""
    if rule.is_glob:
        return glob_to_regex(rule.path).match(basename(file_path)) is not None
    return any(form in file_path for form in spec_forms(rule.path, home))


def classify_path(
    file_path: str,
    rules: Sequence[PathRule],
    home: Optional[str] = None,
) -> Optional[PathRule]:
    """Return the first rule, in list order, that covers the file path.

    Args:
        file_path: Path targeted by an operation.
        rules: Ordered path rules.
        home: Home directory override for ``~`` expansion.

    Returns:
        The first matching PathRule, or None.
    """
    if not file_path:
        return None

    for rule in rules:
        if path_matches(file_path, rule, home):
            return rule
    return None
