"""Lookup structures for plain domain names and regular expressions."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Protocol, Sequence

_logger = logging.getLogger(__name__)

_REGEX_ENTRY = re.compile(r"/.*/")


class Cache(Protocol):
    def element_count(self) -> int: ...

    def contains(self, search: str) -> bool: ...


def _normalize(entry: str) -> str:
    return entry.lower()


class StringCache:
    """Case-insensitive exact-match set of strings."""

    def __init__(self, entries: Iterable[str] = ()) -> None:
        self._entries = frozenset(_normalize(e) for e in entries if e)

    def element_count(self) -> int:
        return len(self._entries)

    def contains(self, search: str) -> bool:
        normalized = _normalize(search)
        return bool(normalized) and normalized in self._entries


class RegexCache:
    """Matches a string when any of its patterns is found in it."""

    def __init__(self, patterns: Sequence[re.Pattern[str]] = ()) -> None:
        self._patterns = tuple(patterns)

    def element_count(self) -> int:
        return len(self._patterns)

    def contains(self, search: str) -> bool:
        for pattern in self._patterns:
            if pattern.search(search):
                _logger.debug("regex '%s' matched with '%s'", pattern.pattern, search)
                return True
        return False


class ChainedCache:
    """Matches when any of the contained caches matches."""

    def __init__(self, caches: Sequence[Cache]) -> None:
        self._caches = tuple(caches)

    def element_count(self) -> int:
        return sum(cache.element_count() for cache in self._caches)

    def contains(self, search: str) -> bool:
        return any(cache.contains(search) for cache in self._caches)


class StringCacheFactory:
    """Collects distinct non-empty entries for a StringCache."""

    def __init__(self) -> None:
        self._entries: set[str] = set()

    def add_entry(self, entry: str) -> None:
        if entry:
            self._entries.add(_normalize(entry))

    def create(self) -> StringCache:
        cache = StringCache(self._entries)
        self._entries = set()
        return cache


class RegexCacheFactory:
    """Compiles entries into a RegexCache; invalid patterns are skipped."""

    def __init__(self) -> None:
        self._patterns: list[re.Pattern[str]] = []

    def add_entry(self, entry: str) -> None:
        try:
            self._patterns.append(re.compile(entry))
        except re.error:
            _logger.warning("invalid regex '%s'", entry)

    def create(self) -> RegexCache:
        return RegexCache(self._patterns)


class ChainedCacheFactory:
    """Routes "/pattern/" entries to regexes and everything else to strings."""

    def __init__(self) -> None:
        self._strings = StringCacheFactory()
        self._regexes = RegexCacheFactory()

    def add_entry(self, entry: str) -> None:
        if _REGEX_ENTRY.fullmatch(entry):
            self._regexes.add_entry(entry.strip("/").strip())
        else:
            self._strings.add_entry(entry)

    def create(self) -> ChainedCache:
        return ChainedCache([self._strings.create(), self._regexes.create()])