"""Groups of domain lists loaded from URLs, local files or inline text."""

from __future__ import annotations

import enum
import ipaddress
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import IO, Iterable, Iterator, Mapping, Optional, Sequence, Union

from blockydns.downloader import FileDownloader, HTTPDownloader, TransientError
from blockydns.durations import humanize_duration
from blockydns.events import BLOCKING_CACHE_GROUP_CHANGED, bus
from blockydns.stringcache import ChainedCache, ChainedCacheFactory

_logger = logging.getLogger(__name__)

DEFAULT_PROCESSING_CONCURRENCY = 4
_MAX_LINE_LENGTH = 64 * 1024


class ListCacheType(enum.IntEnum):
    """Kind of list held by a cache."""

    BLACKLIST = 0
    WHITELIST = 1

    def __str__(self) -> str:
        return self.name.lower()

    @classmethod
    def names(cls) -> list[str]:
        return [str(member) for member in cls]

    @classmethod
    def parse(cls, name: str) -> "ListCacheType":
        """Return the member called name; raise ValueError for unknown names."""
        for member in cls:
            if str(member) == name:
                return member
        raise ValueError(
            f"{name} is not a valid ListCacheType, try [{', '.join(cls.names())}]"
        )


class ListCacheError(Exception):
    """Raised when one or more groups could not be loaded completely.

    ``cache`` is the list cache, usable with whatever could be loaded.
    """

    def __init__(
        self,
        message: str,
        errors: Sequence[BaseException] = (),
        cache: Optional["ListCache"] = None,
    ) -> None:
        super().__init__(message)
        self.errors = list(errors)
        self.cache = cache


def process_line(line: str) -> str:
    """Return the entry a list line stands for, or "" for comments and blanks.

    Hosts-file lines yield their last column; IP addresses are normalised.
    """
    line = line.strip()
    if line.startswith("#"):
        return ""
    parts = line.split()
    if not parts:
        return ""
    host = parts[-1]
    if "%" not in host:
        try:
            ip = ipaddress.ip_address(host)
        except ValueError:
            pass
        else:
            if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
                return str(ip.ipv4_mapped)
            return str(ip)
    return host.strip().lower()


def _text_lines(stream: Iterable[Union[str, bytes]]) -> Iterator[str]:
    for raw in stream:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", "replace")
        yield raw.rstrip("\r\n")


class ListCache:
    """Named groups of lists, each matched case-insensitively or by regex.

    Unless ``async_load`` is set the lists are loaded on creation, and a
    failure raises ListCacheError carrying the cache. With a positive
    ``refresh_period`` the lists are reloaded periodically until ``close``.
    """

    def __init__(
        self,
        list_type: ListCacheType,
        group_to_links: Mapping[str, Sequence[str]],
        refresh_period: float = 0.0,
        downloader: Optional[FileDownloader] = None,
        processing_concurrency: int = 0,
        async_load: bool = False,
    ) -> None:
        self.list_type = list_type
        self.refresh_period = refresh_period
        self.processing_concurrency = processing_concurrency or DEFAULT_PROCESSING_CONCURRENCY
        self._group_to_links = {group: list(links) for group, links in group_to_links.items()}
        self._downloader = downloader if downloader is not None else HTTPDownloader()
        self._caches: dict[str, ChainedCache] = {}
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._worker: Optional[threading.Thread] = None

        if not async_load:
            self.reload(init=True)
        self._start_periodic_refresh()

    def _start_periodic_refresh(self) -> None:
        if self.refresh_period > 0:
            self._worker = threading.Thread(target=self._run_refresh, daemon=True)
            self._worker.start()

    def _run_refresh(self) -> None:
        while not self._stop.wait(self.refresh_period):
            self.refresh()

    def configuration(self) -> list[str]:
        """Describe the configuration and the number of entries per group."""
        if self.refresh_period > 0:
            result = [f"refresh period: {humanize_duration(self.refresh_period)}"]
        else:
            result = ["refresh: disabled"]

        result.append("group links:")
        for group, links in self._group_to_links.items():
            result.append(f"  {group}:")
            for link in links:
                shown = "[INLINE DEFINITION]" if "\n" in link else link
                result.append(f"   - {shown}")

        result.append("group caches:")
        total = 0
        with self._lock:
            for group, cache in self._caches.items():
                count = cache.element_count()
                result.append(f"  {group}: {count} entries")
                total += count
        result.append(f"  TOTAL: {total} entries")
        return result

    def match(self, domain: str, groups: Iterable[str]) -> Optional[str]:
        """Return the first of groups whose lists contain domain, or None."""
        with self._lock:
            for group in groups:
                cache = self._caches.get(group)
                if cache is not None and cache.contains(domain):
                    return group
        return None

    def element_count(self, group: str) -> int:
        """Number of entries loaded for group; KeyError if never loaded."""
        with self._lock:
            return self._caches[group].element_count()

    def refresh(self) -> None:
        """Reload all lists, keeping what could not be reloaded temporarily."""
        try:
            self.reload(init=False)
        except ListCacheError:
            pass

    def reload(self, init: bool) -> None:
        """Reload all groups; raise ListCacheError listing every failure.

        A group hit by a temporary error keeps its previous entries; other
        failures replace the group with whatever could be read.
        """
        errors: list[BaseException] = []
        messages: list[str] = []
        for group, links in self._group_to_links.items():
            cache, group_errors = self._create_cache_for_group(links)
            errors.extend(group_errors)
            messages.extend(f"can't create cache group '{group}': {e}" for e in group_errors)

            if cache is None:
                if init:
                    _logger.warning("Populating group cache failed for group %s", group)
                else:
                    _logger.warning(
                        "Populating of group cache failed, "
                        "leaving items from last successful download in cache"
                    )
                continue

            with self._lock:
                self._caches[group] = cache
            count = cache.element_count()
            bus().publish(BLOCKING_CACHE_GROUP_CHANGED, self.list_type, group, count)
            _logger.info("group import finished: group=%s total_count=%d", group, count)

        if errors:
            raise ListCacheError("; ".join(messages), errors, cache=self)

    def _create_cache_for_group(
        self, links: Sequence[str]
    ) -> tuple[Optional[ChainedCache], list[BaseException]]:
        factory = ChainedCacheFactory()
        errors: list[BaseException] = []
        with ThreadPoolExecutor(max_workers=self.processing_concurrency) as pool:
            futures = [pool.submit(self._read_link, link) for link in links]
            for future in as_completed(futures):
                try:
                    entries = future.result()
                except TransientError as error:
                    for pending in futures:
                        pending.cancel()
                    return None, [error]
                except Exception as error:  # every other failure is collected
                    errors.append(error)
                    continue
                for entry in entries:
                    factory.add_entry(entry)
        return factory.create(), errors

    def _open(self, link: str) -> IO:
        if "\n" in link:
            return _InlineList(link)
        if link.startswith("http"):
            return self._downloader.download_file(link)
        _logger.info("starting processing of file: %s", link)
        path = link[len("file://"):] if link.startswith("file://") else link
        return open(path, "rb")

    def _read_link(self, link: str) -> list[str]:
        try:
            stream = self._open(link)
        except Exception as error:
            _logger.warning("error during file processing: %s", error)
            raise

        entries = []
        with stream:
            for line in _text_lines(stream):
                if len(line) > _MAX_LINE_LENGTH:
                    _logger.warning("can't parse file: line too long")
                    return entries
                entry = process_line(line)
                if entry:
                    entries.append(entry)
        _logger.info("file imported: source=%s count=%d", link, len(entries))
        return entries

    def close(self) -> None:
        """Stop the periodic refresh."""
        self._stop.set()
        if self._worker is not None and self._worker is not threading.current_thread():
            self._worker.join()

    def __enter__(self) -> "ListCache":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class _InlineList:
    """A list written directly in the configuration, read like a file."""

    def __init__(self, text: str) -> None:
        self._lines = text.splitlines(keepends=True)

    def __iter__(self) -> Iterator[str]:
        return iter(self._lines)

    def __enter__(self) -> "_InlineList":
        return self

    def __exit__(self, *exc: object) -> None:
        pass