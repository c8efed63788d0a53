"""Route pattern matching for intercepted requests.

A pattern is one of three strategies:

- glob string: ``*`` matches within one path segment, ``**`` matches across
  segments, ``{a,b}`` matches either alternative; everything else, ``?``
  included, is literal. Globs must match the whole normalized URL.
- compiled regular expression: searched in the normalized URL.
- predicate: called with the parsed URL, truthy means match.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Pattern, Union
from urllib.parse import SplitResult, urljoin, urlsplit

from ..models.http import normalize_url
from ..errors import InvalidPatternError

UrlPredicate = Callable[[SplitResult], Any]
PatternInput = Union[str, Pattern[str], UrlPredicate, "RoutePattern"]


class MatchStrategy(str, Enum):
    """How a route pattern is compared with a URL."""

    GLOB = "glob"
    REGEX = "regex"
    PREDICATE = "predicate"


def glob_to_regex(glob: str) -> str:
    """Translate a URL glob into an anchored regular expression."""
    tokens = ["^"]
    in_group = False
    i = 0
    while i < len(glob):
        char = glob[i]
        if char == "\\" and i + 1 < len(glob):
            tokens.append(re.escape(glob[i + 1]))
            i += 2
            continue
        if char == "*":
            stars = 1
            while i + 1 < len(glob) and glob[i + 1] == "*":
                stars += 1
                i += 1
            tokens.append(".*" if stars > 1 else "[^/]*")
        elif char == "{" and not in_group:
            in_group = True
            tokens.append("(?:")
        elif char == "}" and in_group:
            in_group = False
            tokens.append(")")
        elif char == "," and in_group:
            tokens.append("|")
        else:
            tokens.append(re.escape(char))
        i += 1

    if in_group:
        raise InvalidPatternError(f"Unclosed '{{' in glob pattern: {glob!r}")

    tokens.append("$")
    return "".join(tokens)


def resolve_glob(glob: str, base_url: Optional[str]) -> str:
    """Resolve a relative glob such as ``/api/items`` against ``base_url``."""
    if not base_url or glob.startswith("*") or "://" in glob:
        return glob
    return urljoin(base_url, glob)


@dataclass(frozen=True)
class RoutePattern:
    """An immutable, compiled route pattern."""

    strategy: MatchStrategy
    source: Any
    _regex: Optional[Pattern[str]] = field(default=None, repr=False, compare=False)
    _predicate: Optional[UrlPredicate] = field(default=None, repr=False, compare=False)

    @classmethod
    def compile(cls, pattern: PatternInput, base_url: Optional[str] = None) -> "RoutePattern":
        """Build a ``RoutePattern`` from a glob, regex or predicate.

        Raises:
            InvalidPatternError: If the pattern has an unsupported type or
                is an empty string.
        """
        if isinstance(pattern, RoutePattern):
            return pattern
        if isinstance(pattern, str):
            if not pattern:
                raise InvalidPatternError("Route glob must not be empty")
            resolved = resolve_glob(pattern, base_url)
            return cls(
                strategy=MatchStrategy.GLOB,
                source=pattern,
                _regex=re.compile(glob_to_regex(resolved)),
            )
        if isinstance(pattern, re.Pattern):
            return cls(strategy=MatchStrategy.REGEX, source=pattern, _regex=pattern)
        if callable(pattern):
            return cls(strategy=MatchStrategy.PREDICATE, source=pattern, _predicate=pattern)
        raise InvalidPatternError(
            f"Route pattern must be a glob string, compiled regex or callable, "
            f"got {type(pattern).__name__}"
        )

    def matches(self, url: str) -> bool:
        """Check whether ``url`` satisfies this pattern.

        Predicate exceptions propagate to the caller.
        """
        normalized = normalize_url(url)
        if self.strategy is MatchStrategy.GLOB:
            return self._regex.fullmatch(normalized) is not None
        if self.strategy is MatchStrategy.REGEX:
            return self._regex.search(normalized) is not None
        return bool(self._predicate(urlsplit(normalized)))

    def is_same_source(self, pattern: Any) -> bool:
        """True when ``pattern`` is the value this pattern was compiled from."""
        if isinstance(pattern, RoutePattern):
            return pattern is self
        if self.strategy is MatchStrategy.PREDICATE:
            return pattern is self.source
        return pattern == self.source

    def describe(self) -> str:
        if self.strategy is MatchStrategy.GLOB:
            return self.source
        if self.strategy is MatchStrategy.REGEX:
            return f"/{self.source.pattern}/"
        return getattr(self.source, "__name__", "<predicate>")

    def __str__(self) -> str:
        return self.describe()
