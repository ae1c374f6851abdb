"""Network capability handed to node actions.

Wraps a `requests.Session` so scripts and legacy API nodes share connection
pooling, a default timeout and a stable User-Agent. The session is blocking;
`HttpClient.fetch` runs it on a worker thread so the event loop keeps
servicing the run timeout while a request is in flight.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import requests

from workflow_runner import __version__

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """Minimal, thread-safe view of a completed response."""

    url: str
    status: int
    text: str
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400

    def json(self) -> Any:
        return json.loads(self.text)

    def parsed(self) -> Any:
        """Return the decoded JSON body, or the raw text when it isn't JSON."""

        try:
            return self.json()
        except ValueError:
            return self.text


class HttpClient:
    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": f"workflow-runner/{__version__}"})

    def request(
        self,
        url: str,
        *,
        method: str = "GET",
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        json_body: Any = None,
        data: Any = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        logger.debug("HTTP request", extra={"method": method.upper(), "url": url})
        resp = self._session.request(
            method.upper(),
            url,
            params=params,
            headers=dict(headers) if headers else None,
            json=json_body,
            data=data,
            timeout=timeout if timeout is not None else self._timeout,
        )
        return HttpResponse(
            url=resp.url,
            status=resp.status_code,
            text=resp.text,
            headers=dict(resp.headers),
        )

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        json_body: Any = None,
        data: Any = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        return await asyncio.to_thread(
            self.request,
            url,
            method=method,
            params=params,
            headers=headers,
            json_body=json_body,
            data=data,
            timeout=timeout,
        )

    def close(self) -> None:
        self._session.close()
