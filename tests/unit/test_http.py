"""Unit tests for the HTTP capability."""

from __future__ import annotations

import asyncio
from unittest.mock import Mock

import requests

from workflow_runner import __version__
from workflow_runner.http import HttpClient, HttpResponse


def _session(status: int = 200, text: str = "{}") -> Mock:
    session = Mock(spec=requests.Session)
    session.headers = {}
    resp = Mock()
    resp.url = "https://example.test/final"
    resp.status_code = status
    resp.text = text
    resp.headers = {"Content-Type": "application/json"}
    session.request.return_value = resp
    return session


def test_response_helpers() -> None:
    ok = HttpResponse(url="u", status=204, text='{"a": 1}')
    plain = HttpResponse(url="u", status=404, text="not found")

    assert ok.ok
    assert ok.json() == {"a": 1}
    assert not plain.ok
    assert plain.parsed() == "not found"


def test_request_uses_default_timeout_and_user_agent() -> None:
    session = _session(text='{"temp": 3}')
    client = HttpClient(timeout_seconds=7, session=session)

    resp = client.request("https://example.test", method="post", json_body={"q": 1})

    assert session.headers["User-Agent"] == f"workflow-runner/{__version__}"
    session.request.assert_called_once_with(
        "POST",
        "https://example.test",
        params=None,
        headers=None,
        json={"q": 1},
        data=None,
        timeout=7,
    )
    assert resp.status == 200
    assert resp.url == "https://example.test/final"
    assert resp.parsed() == {"temp": 3}


def test_fetch_runs_request_off_the_loop() -> None:
    session = _session(status=500, text="boom")
    client = HttpClient(session=session)

    resp = asyncio.run(client.fetch("https://example.test", timeout=1.5, headers={"X": "1"}))

    assert resp.status == 500
    assert session.request.call_args.kwargs["timeout"] == 1.5
    assert session.request.call_args.kwargs["headers"] == {"X": "1"}
    client.close()
    session.close.assert_called_once_with()
