"""Exclusion rules for synchronization.

Patterns use glob syntax:

- ``*`` matches any characters within one path segment
- ``**`` matches across path segments
- ``?`` matches exactly one character that is not a separator

Matching is case-insensitive and ``\\`` and ``/`` are treated as the same
separator. A pattern matches when it matches a run of whole path segments
anywhere in the path, so ``node_modules`` excludes every path that has a
``node_modules`` segment.

There is no escape character: every character other than the wildcards is
matched literally.

Examples:
    >>> matcher = compile_excludes(["node_modules", "*.log"])
    >>> matcher.match("web/node_modules/react/index.js").pattern
    'node_modules'
    >>> matcher.match("logs/app.log").pattern
    '*.log'
    >>> matcher.match("src/app.py") is None
    True
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional

from ..exceptions import ExclusionPatternError

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\*+/?|\?|[\\/]|[^*?\\/]+")


def normalize_separators(path: str) -> str:
    """Replace backslashes with forward slashes."""
    return path.replace("\\", "/")


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Convert a glob exclusion pattern to a compiled regular expression.

    Args:
        pattern: Glob pattern

    Returns:
        Compiled case-insensitive regex anchored at segment boundaries

    Raises:
        ExclusionPatternError: If the pattern is empty or has a run of
            three or more ``*``
    """
    if not pattern or not pattern.strip():
        raise ExclusionPatternError("Exclusion pattern must not be empty")

    normalized = normalize_separators(pattern.strip())
    # a leading separator anchors the pattern at the synchronization root
    anchor = "^" if normalized.startswith("/") else "(?:^|/)"
    normalized = normalized.strip("/")
    if not normalized:
        raise ExclusionPatternError(f"Invalid exclusion pattern '{pattern}'")

    parts: list[str] = []
    for token in _TOKEN_RE.findall(normalized):
        if token.startswith("*"):
            stars = token.rstrip("/")
            if len(stars) > 2:
                raise ExclusionPatternError(
                    f"Invalid wildcard '{stars}' in exclusion pattern '{pattern}'"
                )
            if stars == "**":
                # "**/" may also match zero directories
                parts.append("(?:.*/)?" if token.endswith("/") else ".*")
            else:
                parts.append("[^/]*/" if token.endswith("/") else "[^/]*")
        elif token == "?":
            parts.append("[^/]")
        elif token in ("/", "\\"):
            parts.append("/")
        else:
            parts.append(re.escape(token))

    return re.compile(
        anchor + "".join(parts) + "(?:/|$)",
        re.IGNORECASE,
    )


@dataclass(frozen=True)
class ExclusionRule:
    """A compiled exclusion pattern."""

    pattern: str
    """Pattern as given by the user"""

    regex: re.Pattern[str]
    """Compiled matcher"""

    def matches(self, path: str) -> bool:
        """Check whether a relative path matches this rule."""
        return self.regex.search(normalize_separators(path)) is not None


class ExclusionMatcher:
    """Ordered list of exclusion rules; the first matching rule wins."""

    def __init__(self, rules: Iterable[ExclusionRule] = ()):
        self.rules: tuple[ExclusionRule, ...] = tuple(rules)

    def __len__(self) -> int:
        return len(self.rules)

    def __bool__(self) -> bool:
        return bool(self.rules)

    def match(self, path: str) -> Optional[ExclusionRule]:
        """Find the first rule matching a path.

        Args:
            path: Path relative to the synchronization root

        Returns:
            The first matching rule, or None if the path is not excluded
        """
        for rule in self.rules:
            if rule.matches(path):
                return rule
        return None


def compile_excludes(patterns: Optional[Iterable[str]]) -> ExclusionMatcher:
    """Compile exclusion patterns, preserving their order.

    Args:
        patterns: Glob patterns (e.g. ["*.tmp", "cache/**"])

    Returns:
        ExclusionMatcher for the patterns

    Raises:
        ExclusionPatternError: If any pattern is malformed
    """
    rules = [ExclusionRule(p, glob_to_regex(p)) for p in (patterns or [])]
    if rules:
        logger.debug("Compiled %d exclusion rule(s)", len(rules))
    return ExclusionMatcher(rules)
