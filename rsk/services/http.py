"""HTTP client abstraction for upstream release feeds.

- HttpClient: protocol injected into the version oracle
- RealHttpClient: urllib-based implementation
- MockHttpClient: canned responses for tests
"""

from __future__ import annotations

import json
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from rsk import __version__
from rsk.core.result import Err, Ok, Result

__all__ = ["HttpClient", "RealHttpClient", "MockHttpClient", "HttpError"]


@dataclass(frozen=True, slots=True)
class HttpError:
    """HTTP failure details.

    Attributes:
        url: The URL that failed.
        status: HTTP status code (0 for network errors).
        message: Human-readable reason.
        rate_limit_remaining: ``X-RateLimit-Remaining`` when the server sent it.
    """

    url: str
    status: int
    message: str
    rate_limit_remaining: int | None = None

    @property
    def rate_limited(self) -> bool:
        if self.status == 429:
            return True
        if self.status == 403:
            return self.rate_limit_remaining == 0 or "rate limit" in self.message.lower()
        return False

    @property
    def transient(self) -> bool:
        """Worth retrying: network errors, 5xx and rate limiting."""
        return self.status == 0 or self.status >= 500 or self.rate_limited

    def __str__(self) -> str:
        if self.status:
            return f"HTTP {self.status}: {self.message} ({self.url})"
        return f"{self.message} ({self.url})"


@runtime_checkable
class HttpClient(Protocol):
    def get_json(self, url: str) -> Result[object, HttpError]:
        """Fetch ``url`` and decode the JSON body (object or array)."""
        ...


def _remaining(headers: object) -> int | None:
    get = getattr(headers, "get", None)
    if get is None:
        return None
    raw = get("X-RateLimit-Remaining")
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


class RealHttpClient:
    """urllib client with system certificates and optional bearer token."""

    def __init__(
        self,
        timeout: float = 30.0,
        token: str | None = None,
        user_agent: str = f"rsk/{__version__}",
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self._token = token
        self._ssl_context = ssl.create_default_context()

    def _headers(self) -> dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/vnd.github+json",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _request(self, url: str) -> Result[bytes, HttpError]:
        try:
            req = urllib.request.Request(url, headers=self._headers())
            with urllib.request.urlopen(
                req,
                timeout=self.timeout,
                context=self._ssl_context,
            ) as response:
                return Ok(response.read())
        except urllib.error.HTTPError as e:
            body = ""
            try:
                body = e.read().decode("utf-8", errors="replace")
            except OSError:
                pass
            message = str(e.reason)
            if "rate limit" in body.lower():
                message = f"{message}: API rate limit exceeded"
            return Err(
                HttpError(
                    url=url,
                    status=e.code,
                    message=message,
                    rate_limit_remaining=_remaining(e.headers),
                )
            )
        except urllib.error.URLError as e:
            return Err(HttpError(url=url, status=0, message=str(e.reason)))
        except TimeoutError:
            return Err(HttpError(url=url, status=0, message="Request timed out"))
        except (ValueError, OSError) as e:
            return Err(HttpError(url=url, status=0, message=str(e)))

    def get_json(self, url: str) -> Result[object, HttpError]:
        result = self._request(url)
        if isinstance(result, Err):
            return result

        try:
            data: object = json.loads(result.value.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return Err(HttpError(url=url, status=0, message=f"JSON parse error: {e}"))
        return Ok(data)


class MockHttpClient:
    """Canned responses per URL; a list of responses is served in order.

    Usage:
        client = MockHttpClient()
        client.set_json(url, [{"tag_name": "v5.3.1"}])
        client.set_sequence(url, [HttpError(url, 503, "Service Unavailable"), [...]])
    """

    def __init__(self) -> None:
        self._responses: dict[str, list[object | HttpError]] = {}
        self.calls: list[str] = []

    def set_json(self, url: str, response: object | HttpError) -> None:
        self._responses[url] = [response]

    def set_sequence(self, url: str, responses: list[object | HttpError]) -> None:
        self._responses[url] = list(responses)

    def get_json(self, url: str) -> Result[object, HttpError]:
        self.calls.append(url)

        queue = self._responses.get(url)
        if not queue:
            return Err(HttpError(url=url, status=404, message="Not found (mock)"))

        # The last response sticks so repeated polls keep seeing it.
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, HttpError):
            return Err(response)
        return Ok(response)
