"""Upstream version discovery.

The answer is the first stable, semver-shaped tag in the feed. Feeds are
assumed newest-first and no semantic sorting is applied: a feed returning
tags in another order would make us pick a non-latest version.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from rsk.core.result import Err, Ok, Result
from rsk.core.retry import RetryPolicy, retry
from rsk.core.structured import as_obj_list, as_str_dict, get_int, get_str, get_table
from rsk.output.console import ConsoleProtocol
from rsk.release.errors import NotFound, OracleError, PublishError, RateLimited, TransportError
from rsk.release.manifest import release_tag
from rsk.release.model import Tool
from rsk.release.versions import (
    Version,
    VersionSource,
    is_prerelease_tag,
    is_semver_tag,
    version_from_tag,
)
from rsk.services.http import HttpClient, HttpError
from rsk.services.publisher import Publisher

__all__ = ["VersionOracle", "VersionCache", "first_stable_tag"]

# Below this many remaining API calls the check command warns the operator.
RATE_LIMIT_WARNING_THRESHOLD = 10


def _utcnow() -> datetime:
    return datetime.now(UTC)


def first_stable_tag(tags: Iterable[str]) -> str | None:
    """First semver-shaped tag carrying no pre-release marker, in feed order."""
    for tag in tags:
        if is_semver_tag(tag) and not is_prerelease_tag(tag):
            return tag.strip()
    return None


@dataclass
class VersionCache:
    """Explicit per-tool cache of discovered versions.

    Entries older than ``ttl_seconds`` are ignored; a TTL of 0 disables the cache.
    """

    ttl_seconds: float
    entries: dict[str, Version] = field(default_factory=lambda: {})

    def get(self, tool: str, now: datetime) -> Version | None:
        if self.ttl_seconds <= 0:
            return None
        cached = self.entries.get(tool)
        if cached is None:
            return None
        if (now - cached.discovered_at).total_seconds() > self.ttl_seconds:
            return None
        return cached

    def put(self, tool: str, version: Version) -> None:
        if self.ttl_seconds > 0:
            self.entries[tool] = version


def _to_oracle_error(error: HttpError, attempt: int) -> OracleError:
    if error.rate_limited:
        return RateLimited(url=error.url, attempts=attempt)
    return TransportError(
        url=error.url, status=error.status, detail=error.message, attempts=attempt
    )


def _is_transient(error: OracleError) -> bool:
    match error:
        case RateLimited():
            return True
        case TransportError(status=status):
            return status == 0 or status >= 500
        case NotFound():
            return False


class VersionOracle:
    """Answers "what is the latest stable version" and "did we already ship it"."""

    def __init__(
        self,
        *,
        http: HttpClient,
        publisher: Publisher,
        api_url: str = "https://api.github.com",
        policy: RetryPolicy | None = None,
        cache: VersionCache | None = None,
        console: ConsoleProtocol | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._http = http
        self._publisher = publisher
        self._api_url = api_url.rstrip("/")
        self._policy = policy or RetryPolicy()
        self._cache = cache
        self._console = console
        self._clock = clock
        self._sleep = sleep

    def latest_stable(self, tool: Tool) -> Result[Version, OracleError]:
        """Latest stable version: releases feed first, tags feed if it has none.

        Transport failures and rate limiting are retried with backoff and then
        surfaced; the fallback feed is only consulted when the primary feed
        answered but contained no stable tag.
        """
        now = self._clock()
        if self._cache is not None:
            cached = self._cache.get(tool.name, now)
            if cached is not None:
                return Ok(cached)

        found = self._stable_tag(tool.name, tool.upstream)
        tool.last_checked = self._clock()
        if isinstance(found, Err):
            return found

        source, tag = found.value
        version = version_from_tag(tag, at=tool.last_checked, source=source)
        # first_stable_tag only yields semver-shaped tags
        assert version is not None
        if self._cache is not None:
            self._cache.put(tool.name, version)
        return Ok(version)

    def latest_stable_tag(self, upstream: str) -> Result[str, OracleError]:
        """Upstream tag text of the latest stable release of ``owner/repo``.

        Used for helper components, which are checked out at their own
        release tags rather than the tool's version.
        """
        found = self._stable_tag(upstream, upstream)
        if isinstance(found, Err):
            return found
        return Ok(found.value[1])

    def _stable_tag(
        self, name: str, upstream: str
    ) -> Result[tuple[VersionSource, str], OracleError]:
        feeds = (
            (VersionSource.RELEASES, f"{self._api_url}/repos/{upstream}/releases", "tag_name"),
            (VersionSource.TAGS, f"{self._api_url}/repos/{upstream}/tags", "name"),
        )
        for source, url, key in feeds:
            tags = self._fetch_tags(url, key)
            if isinstance(tags, Err):
                return tags

            tag = first_stable_tag(tags.value)
            if tag is None:
                self._note(f"{name}: no stable tag in {source} feed")
                continue
            return Ok((source, tag))

        return Err(NotFound(tool=name, feeds=tuple(str(f[0]) for f in feeds)))

    def already_released(self, tool: Tool, version: Version) -> Result[bool, PublishError]:
        return self._publisher.release_exists(release_tag(tool.name, version.semver))

    def rate_limit_remaining(self) -> Result[int, OracleError]:
        url = f"{self._api_url}/rate_limit"
        result = self._http.get_json(url)
        if isinstance(result, Err):
            return Err(_to_oracle_error(result.error, 1))

        payload = as_str_dict(result.value) or {}
        rate = get_table(payload, "rate") or {}
        remaining = get_int(rate, "remaining")
        if remaining is None:
            return Err(TransportError(url=url, status=0, detail="missing rate.remaining"))
        return Ok(remaining)

    def _fetch_tags(self, url: str, key: str) -> Result[list[str], OracleError]:
        def attempt(n: int) -> Result[list[str], OracleError]:
            result = self._http.get_json(url)
            if isinstance(result, Err):
                return Err(_to_oracle_error(result.error, n))

            items = as_obj_list(result.value)
            if items is None:
                return Err(TransportError(url=url, status=0, detail="expected a JSON array"))
            tags: list[str] = []
            for item in items:
                entry = as_str_dict(item)
                name = get_str(entry, key) if entry is not None else None
                if name is not None:
                    tags.append(name)
            return Ok(tags)

        def on_retry(n: int, error: OracleError, delay: float) -> None:
            self._note(f"{error.message}; retry {n}/{self._policy.attempts} in {delay:g}s")

        return retry(
            attempt,
            policy=self._policy,
            is_transient=_is_transient,
            sleep=self._sleep,
            on_retry=on_retry,
        )

    def _note(self, message: str) -> None:
        if self._console is not None:
            self._console.warning(message)
