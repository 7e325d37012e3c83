"""Dangerous command patterns and the ordered pattern matcher.

Rules are evaluated strictly in list order and the first match wins, so more
specific rules must come before more general ones (``rm -rf /`` before the
generic ``rm -rf`` rule, for example).
"""

import re
from functools import lru_cache
from typing import List, Optional, Sequence

from .models import Action, CommandRule, Decision, Outcome, PatternMatch


BLOCK = Action.BLOCK
ASK = Action.ASK

# action BLOCK = hard block, never executes
# action ASK   = force the host's interactive confirmation
DEFAULT_PATTERNS: List[CommandRule] = [
    # -- System destruction --
    CommandRule(r"rm\s+-rf\s+/", "Recursive delete from root", BLOCK),
    CommandRule(r":\(\)\ \{:", "Fork bomb", BLOCK),
    CommandRule(r"fork\(\)", "Fork bomb", BLOCK),
    CommandRule(r">\s*/dev/sd", "Direct device write", BLOCK),
    CommandRule(r"mkfs\.", "Format filesystem", BLOCK),
    CommandRule(r"kill\s+-9\s+-1", "Kill all processes", BLOCK),
    CommandRule(r"killall\s+-9", "Kill all processes", BLOCK),
    CommandRule(r"shutdown", "System shutdown", BLOCK),
    CommandRule(r"reboot", "System reboot", BLOCK),
    CommandRule(r"init\s+0", "System halt", BLOCK),
    CommandRule(r"format\s+[a-z]:", "Windows format", BLOCK),
    CommandRule(r"dd\s+.*of=/dev/", "dd writing to device", BLOCK),

    # -- SQL (block catastrophic, ask targeted) --
    CommandRule(r"DROP\s+TABLE", "SQL DROP TABLE", BLOCK),
    CommandRule(r"DROP\s+DATABASE", "SQL DROP DATABASE", BLOCK),
    CommandRule(r"DELETE\s+FROM\s+\w+\s*;", "SQL DELETE without WHERE clause", BLOCK),
    CommandRule(r"DELETE\s+FROM\s+\w+\s*$", "SQL DELETE without WHERE clause", BLOCK),
    CommandRule(r"TRUNCATE\s+TABLE", "SQL TRUNCATE TABLE", BLOCK),
    CommandRule(r"DELETE\s+FROM\s+\w+\s+WHERE\b", "SQL DELETE with WHERE clause", ASK),

    # -- Piping downloads into a shell --
    CommandRule(r"curl.*\|\s*sh", "Pipe curl to shell", BLOCK),
    CommandRule(r"wget.*\|\s*sh", "Pipe wget to shell", BLOCK),

    # -- Git (block irreversible, ask recoverable) --
    CommandRule(r"git\s+push\s+.*--force(?!-with-lease)",
                "git push --force (use --force-with-lease)", BLOCK),
    CommandRule(r"git\s+push\s+(-[^\s]*)*-f\b",
                "git push -f (use --force-with-lease)", BLOCK),
    CommandRule(r"git\s+stash\s+clear", "git stash clear (deletes ALL stashes)", BLOCK),
    CommandRule(r"git\s+filter-branch", "git filter-branch (rewrites entire history)", BLOCK),
    CommandRule(r"git\s+reset\s+--hard", "git reset --hard (use --soft or stash)", ASK),
    CommandRule(r"git\s+clean\s+(-[^\s]*)*-[fd]", "git clean with force/directory flags", ASK),
    CommandRule(r"git\s+checkout\s+--\s*\.", "Discard all uncommitted changes", ASK),
    CommandRule(r"git\s+restore\s+\.", "Discard all uncommitted changes", ASK),
    CommandRule(r"git\s+stash\s+drop", "Permanently deletes a stash", ASK),
    CommandRule(r"git\s+branch\s+(-[^\s]*)*-D", "Force delete branch (even if unmerged)", ASK),
    CommandRule(r"git\s+push\s+--delete", "Delete remote branch", ASK),
    CommandRule(r"git\s+push\s+\S+\s+:\S+", "Delete remote branch (refspec syntax)", ASK),

    # -- File operations (block sudo rm, ask recursive/forced rm) --
    CommandRule(r"sudo\s+rm\b", "sudo rm", BLOCK),
    CommandRule(r"\brm\s+(-[^\s]*)*-[rRf]", "rm with recursive or force flags", ASK),
    CommandRule(r"\brm\s+--recursive", "rm with --recursive flag", ASK),
    CommandRule(r"\brm\s+--force", "rm with --force flag", ASK),

    # -- Permissions --
    CommandRule(r"chmod\s+(-[^\s]+\s+)*777", "chmod 777 (world writable)", ASK),
    CommandRule(r"chmod\s+-[Rr].*777", "Recursive chmod 777", ASK),
    CommandRule(r"chown\s+-[Rr]", "Recursive ownership change", ASK),

    # -- Cloud / infrastructure --
    CommandRule(r"terraform\s+destroy", "terraform destroy", BLOCK),
    CommandRule(r"pulumi\s+destroy", "pulumi destroy", BLOCK),
    CommandRule(r"aws\s+s3\s+rm\s+.*--recursive", "aws s3 rm --recursive", BLOCK),
    CommandRule(r"aws\s+s3\s+rb\s+.*--force", "aws s3 rb --force", BLOCK),
    CommandRule(r"aws\s+ec2\s+terminate-instances", "aws ec2 terminate-instances", ASK),
    CommandRule(r"aws\s+rds\s+delete-db-instance", "aws rds delete-db-instance", ASK),
    CommandRule(r"aws\s+cloudformation\s+delete-stack", "aws cloudformation delete-stack", ASK),
    CommandRule(r"gcloud\s+projects\s+delete", "gcloud projects delete", BLOCK),
    CommandRule(r"gcloud\s+compute\s+instances\s+delete", "gcloud compute instances delete", ASK),
    CommandRule(r"gcloud\s+sql\s+instances\s+delete", "gcloud sql instances delete", ASK),
    CommandRule(r"gcloud\s+container\s+clusters\s+delete", "gcloud container clusters delete", ASK),

    # -- Docker / Kubernetes --
    CommandRule(r"docker\s+system\s+prune\s+.*-a", "docker system prune -a", ASK),
    CommandRule(r"docker\s+volume\s+prune", "docker volume prune", ASK),
    CommandRule(r"kubectl\s+delete\s+namespace", "kubectl delete namespace", ASK),
    CommandRule(r"kubectl\s+delete\s+all\s+--all", "kubectl delete all --all", BLOCK),
    CommandRule(r"helm\s+uninstall", "helm uninstall", ASK),

    # -- Database CLIs --
    CommandRule(r"redis-cli\s+FLUSHALL", "redis FLUSHALL", BLOCK),
    CommandRule(r"redis-cli\s+FLUSHDB", "redis FLUSHDB", ASK),
    CommandRule(r"dropdb\b", "PostgreSQL dropdb", BLOCK),
    CommandRule(r"mysqladmin\s+drop", "MySQL drop database", BLOCK),
    CommandRule(r"mongosh.*dropDatabase", "MongoDB dropDatabase", BLOCK),

    # -- Hosting / deployment --
    CommandRule(r"vercel\s+remove\s+.*--yes", "vercel remove --yes", ASK),
    CommandRule(r"vercel\s+projects\s+rm", "vercel projects rm", ASK),
    CommandRule(r"netlify\s+sites:delete", "netlify sites:delete", ASK),
    CommandRule(r"heroku\s+apps:destroy", "heroku apps:destroy", ASK),
    CommandRule(r"heroku\s+pg:reset", "heroku pg:reset", ASK),
    CommandRule(r"fly\s+apps\s+destroy", "fly apps destroy", ASK),
    CommandRule(r"wrangler\s+delete", "wrangler delete (Cloudflare Worker)", ASK),

    # -- Package registries / GitHub --
    CommandRule(r"npm\s+unpublish", "npm unpublish", BLOCK),
    CommandRule(r"gh\s+repo\s+delete", "gh repo delete", BLOCK),

    # -- History --
    CommandRule(r"history\s+-c", "Clear shell history", ASK),
]


@lru_cache(maxsize=512)
def compile_pattern(source: str) -> 're.Pattern[str]':
    """Compile a rule pattern case-insensitively.

    Compiled patterns are cached by their source string, which stays the
    portable form stored in rules and config files.

    Raises:
        re.error: If the source is not a valid regular expression.
    """
    return re.compile(source, re.IGNORECASE)


def find_match(command: str, rules: Sequence[CommandRule]) -> Optional[PatternMatch]:
    """Find the first rule whose pattern matches anywhere in the command.

    Args:
        command: Shell command string to scan.
        rules: Ordered command rules; assumed to hold valid patterns.

    Returns:
        PatternMatch for the first matching rule, or None when nothing matches
        (including for an empty command).
    """
    if not command:
        return None

    for rule in rules:
        found = compile_pattern(rule.pattern).search(command)
        if found:
            return PatternMatch(rule=rule, matched_text=found.group(0) or rule.pattern)

    return None


def match_command(command: str, rules: Sequence[CommandRule]) -> Decision:
    """Turn the first matching command rule into a Decision."""
    match = find_match(command, rules)
    if match is None:
        return Decision.allow()

    outcome = Outcome.BLOCK if match.rule.action is Action.BLOCK else Outcome.ASK
    return Decision(
        outcome=outcome,
        reason=match.rule.reason,
        matched_text=match.matched_text,
    )
