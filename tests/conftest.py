"""
Shared pytest fixtures for neko-request tests.

Requests go through real httpx clients; the server side is an in-process
transport that checks bearer tokens the way the API server does, and the
refresh side is a scripted exchanger whose progress the test controls.
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Set

import httpx
import pytest

from neko_request.api_clients import TokenPair
from neko_request.storage import MemoryTokenStorage


class InProcessAPIServer(httpx.AsyncBaseTransport):
    """Transport answering like an API server that validates bearer tokens.

    Requests whose token is not in ``valid_tokens`` get 401, unless their path
    is public. Paths in ``reject_paths`` always get 401. Entries in
    ``delays`` (keyed by path or ``path@token``) hold the answer back.
    Successful answers echo the request so tests can inspect what was sent.
    """

    def __init__(
        self,
        valid_tokens=(),
        public_paths=(),
        reject_paths=(),
    ):
        self.valid_tokens: Set[str] = set(valid_tokens)
        self.public_paths: Set[str] = set(public_paths)
        self.reject_paths: Set[str] = set(reject_paths)
        self.failures: Dict[str, Exception] = {}
        self.responses: Dict[str, httpx.Response] = {}
        self.delays: Dict[str, float] = {}
        self.requests: List[httpx.Request] = []

    @staticmethod
    def bearer_token(request: httpx.Request) -> Optional[str]:
        auth = request.headers.get("Authorization")
        if auth and auth.startswith("Bearer "):
            return auth[len("Bearer ") :]
        return None

    def tokens_seen(self, path: Optional[str] = None) -> List[Optional[str]]:
        return [
            self.bearer_token(r)
            for r in self.requests
            if path is None or r.url.path == path
        ]

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        self.requests.append(request)
        path = request.url.path
        token = self.bearer_token(request)

        delay = self.delays.get(f"{path}@{token}", self.delays.get(path, 0.0))
        if delay:
            await asyncio.sleep(delay)

        failure = self.failures.get(f"{path}@{token}")
        if failure is not None:
            raise failure

        if path in self.reject_paths:
            return httpx.Response(401, json={"detail": "Unauthorized"})
        if path not in self.public_paths and token not in self.valid_tokens:
            return httpx.Response(401, json={"detail": "Token expired"})

        if path in self.responses:
            return self.responses[path]

        try:
            body = json.loads(request.content) if request.content else None
        except ValueError:
            body = request.content.decode()
        return httpx.Response(
            200,
            json={
                "path": path,
                "method": request.method,
                "query": dict(request.url.params),
                "body": body,
                "token": token,
            },
        )


class ScriptedRefreshExchanger:
    """Refresh exchanger returning scripted outcomes in order.

    Each outcome is a token pair (or mapping) to return or an exception to
    raise; the last outcome repeats. When ``gated`` the call blocks until
    ``release()`` is called.
    """

    def __init__(self, *outcomes: Any, gated: bool = False, delay: float = 0.0):
        self.outcomes = list(outcomes) or [TokenPair("A2", "R2")]
        self.gated = gated
        self.delay = delay
        self.calls: List[Optional[str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._released = asyncio.Event()

    def release(self) -> None:
        self._released.set()

    async def refresh(self, refresh_token: Optional[str]) -> Any:
        self.calls.append(refresh_token)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gated:
                await self._released.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = (
                self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
            )
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not reached before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def api_server():
    """In-process API server accepting the post-refresh token A2."""
    return InProcessAPIServer(valid_tokens={"A2"}, public_paths={"/public"})


@pytest.fixture
def token_storage():
    """Memory store holding the expired A1 / R1 pair."""
    return MemoryTokenStorage(access_token="A1", refresh_token="R1")


@pytest.fixture
def make_exchanger():
    """Factory for scripted refresh exchangers."""
    return ScriptedRefreshExchanger


@pytest.fixture
def make_server():
    """Factory for in-process API servers."""
    return InProcessAPIServer


@pytest.fixture
def wait_until():
    """Poll a predicate from async tests."""
    return _wait_until
