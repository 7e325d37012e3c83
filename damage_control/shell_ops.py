"""Shell operation classification.

Shell commands carry no structured arguments, so the intent of a command
towards a protected path is inferred from its operator vocabulary: a command
"writes" a path when it mentions the path and contains a write operator, and
"deletes" it when it mentions the path and contains a delete operator.

This is a heuristic, not a shell grammar. Tools that are not listed here
(an unknown binary that deletes files, say) are classified as plain access.
"""

import re
from typing import List, Optional, Tuple

from .paths import basename, glob_to_regex, spec_forms


def _verb(*names: str) -> 're.Pattern[str]':
    # A verb must not be glued to word characters, dots or dashes, so
    # "scp", "file.cp" and "--rm" are not verbs.
    alternatives = "|".join(re.escape(name) for name in names)
    return re.compile(rf"(?<![\w.-])(?:{alternatives})(?![\w.-])")


# > and >> with any fd prefix (2> file, 1>> file). Duplications (>&2, 2>&1)
# and redirects to /dev/null are not writes.
_REDIRECT = r"(?<![<>])>>?(?![>&])(?!\s*/dev/null\b)"

WRITE_SIGNATURES: List[Tuple[str, 're.Pattern[str]']] = [
    ("redirect", re.compile(_REDIRECT)),
    ("tee", re.compile(r"(?<![\w.-])tee(?:\s+(?:-a|--append))?(?![\w.-])")),
    ("sed -i", re.compile(r"(?<![\w.-])sed(?![\w.-])[^|;&]*?\s(?:-[a-zA-Z]*i|--in-place)")),
    ("cp", _verb("cp")),
    ("mv", _verb("mv")),
    ("chmod", _verb("chmod")),
    ("chown", _verb("chown")),
    ("ln", _verb("ln")),
    ("install", _verb("install")),
    ("patch", _verb("patch")),
    ("truncate", _verb("truncate")),
    ("dd", _verb("dd")),
    ("touch", _verb("touch")),
    ("mkdir", _verb("mkdir")),
    ("echo/printf/cat redirect",
     re.compile(r"(?<![\w.-])(?:echo|printf|cat)(?![\w.-])[^|;&]*?" + _REDIRECT)),
]

DELETE_SIGNATURES: List[Tuple[str, 're.Pattern[str]']] = [
    ("rm", _verb("rm")),
    ("unlink", _verb("unlink")),
    ("rmdir", _verb("rmdir")),
    ("shred", _verb("shred")),
]

# Quoting and shell punctuation stuck to a token are not part of the filename
_TOKEN_PUNCTUATION = "'\"`;|&()<>"


def references_path(command: str, path_spec: str, home: Optional[str] = None) -> bool:
    """Check whether a command mentions a path spec at all.

    Glob specs are compared against the basename of every whitespace-separated
    token. Literal and directory specs are found by substring search, using
    both the ``~``-expanded and the raw form.
    """
    if not command or not path_spec:
        return False

    if "*" in path_spec:
        regex = glob_to_regex(path_spec)
        for token in command.split():
            name = basename(token.strip(_TOKEN_PUNCTUATION))
            if name and regex.match(name):
                return True
        return False

    return any(form in command for form in spec_forms(path_spec, home))


def _first_signature(
    command: str, signatures: List[Tuple[str, 're.Pattern[str]']]
) -> Optional[str]:
    for name, regex in signatures:
        if regex.search(command):
            return name
    return None


def write_signature(command: str) -> Optional[str]:
    """Name of the first write operator found in the command, if any."""
    return _first_signature(command, WRITE_SIGNATURES)


def delete_signature(command: str) -> Optional[str]:
    """Name of the first delete operator found in the command, if any."""
    return _first_signature(command, DELETE_SIGNATURES)


def is_write(command: str, path_spec: str, home: Optional[str] = None) -> bool:
    """True if the command references the path and contains a write operator."""
    return references_path(command, path_spec, home) and write_signature(command) is not None


def is_delete(command: str, path_spec: str, home: Optional[str] = None) -> bool:
    """True if the command references the path and contains a delete operator."""
    return references_path(command, path_spec, home) and delete_signature(command) is not None
