"""Single-flight token refresh coordination.

Requests rejected with 401 are parked on the active refresh session. The
first one starts the session, which calls the refresh exchanger exactly once,
stores the new tokens and then replays every parked request in the order it
arrived. If the refresh fails, stored tokens are cleared and every parked
request is rejected with ``AuthRefreshFailedError``.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Optional

from .exceptions import AuthRefreshFailedError
from .models import RequestSpec, TokenPair
from .refresh_client import TokenRefreshFn, parse_token_pair

logger = logging.getLogger(__name__)

ReplayFn = Callable[[RequestSpec, str], Awaitable[Any]]


class RefreshState(str, Enum):
    """Refresh coordination states."""

    IDLE = "idle"
    REFRESHING = "refreshing"
    DRAINING = "draining"


@dataclass
class PendingRequest:
    """A 401'd request waiting on the refresh outcome."""

    spec: RequestSpec
    future: "asyncio.Future[Any]"


class RefreshSession:
    """The one in-flight refresh and the FIFO queue of requests waiting on it."""

    def __init__(self):
        self.state = RefreshState.REFRESHING
        self.queue: Deque[PendingRequest] = deque()
        self.task: Optional["asyncio.Task[None]"] = None


class RefreshCoordinator:
    """Drives the refresh state machine for one request client."""

    def __init__(
        self,
        storage,
        refresh_fn: TokenRefreshFn,
        replay: ReplayFn,
        refresh_timeout: float,
    ):
        """Initialize refresh coordinator.

        Args:
            storage: Credential store the new tokens are written to
            refresh_fn: Async callable exchanging a refresh token for a pair
            replay: Re-issues a request with the given access token
            refresh_timeout: Upper bound on the refresh call in seconds
        """
        self._storage = storage
        self._refresh_fn = refresh_fn
        self._replay = replay
        self._refresh_timeout = refresh_timeout
        self._session: Optional[RefreshSession] = None
        self.refresh_count = 0

    @property
    def state(self) -> RefreshState:
        if self._session is None:
            return RefreshState.IDLE
        return self._session.state

    @property
    def queued(self) -> int:
        """Number of requests currently waiting for the refresh outcome."""
        if self._session is None:
            return 0
        return sum(1 for pending in self._session.queue if not pending.future.done())

    async def submit(self, spec: RequestSpec, sent_token: Optional[str] = None) -> Any:
        """Park ``spec`` behind the active refresh and return its replay outcome.

        Starts a refresh session when none is active, unless the stored access
        token already differs from ``sent_token``; the request is then replayed
        right away with the stored token.

        Raises:
            AuthRefreshFailedError: If the refresh fails
            UnauthorizedError: If the replay is rejected with 401 again
            NetworkError: If the replay cannot be delivered
        """
        if self._session is None:
            current_token = await self._storage.get_access_token()
            if (
                self._session is None
                and current_token
                and current_token != sent_token
            ):
                logger.debug(
                    f"Access token changed since {spec.method} {spec.url} was sent, replaying"
                )
                return await self._replay(spec, current_token)

        pending = PendingRequest(spec, asyncio.get_running_loop().create_future())
        session = self._session
        if session is None:
            session = self._session = RefreshSession()
            session.queue.append(pending)
            logger.debug("Refresh state: idle -> refreshing")
            session.task = asyncio.create_task(self._run(session))
        else:
            session.queue.append(pending)
            logger.debug(f"Queued request behind active refresh ({len(session.queue)})")

        pending.future.add_done_callback(
            lambda future: self._discard_cancelled(session, pending, future)
        )
        return await pending.future

    async def close(self) -> None:
        """Cancel an in-flight refresh, rejecting whoever is still waiting."""
        session = self._session
        if session is not None and session.task is not None:
            session.task.cancel()
            await asyncio.gather(session.task, return_exceptions=True)

    def _discard_cancelled(
        self,
        session: RefreshSession,
        pending: PendingRequest,
        future: "asyncio.Future[Any]",
    ) -> None:
        if not future.cancelled():
            return
        try:
            session.queue.remove(pending)
            logger.debug("Cancelled request removed from refresh queue")
        except ValueError:
            # Already taken off the queue for replay
            pass

    async def _exchange(self) -> TokenPair:
        refresh_token = await self._storage.get_refresh_token()
        self.refresh_count += 1
        result = await self._refresh_fn(refresh_token)
        return parse_token_pair(result)

    async def _run(self, session: RefreshSession) -> None:
        try:
            try:
                token_pair = await asyncio.wait_for(
                    self._exchange(), timeout=self._refresh_timeout
                )
                await self._storage.set_access_token(token_pair.access_token)
                await self._storage.set_refresh_token(token_pair.refresh_token)
            except asyncio.CancelledError:
                self._reject_all(session, "Token refresh cancelled", None)
                raise
            except asyncio.TimeoutError as e:
                await self._fail(
                    session,
                    f"Token refresh timed out after {self._refresh_timeout} seconds",
                    e,
                )
                return
            except Exception as e:
                await self._fail(session, "Token refresh failed", e)
                return

            logger.debug("Refresh state: refreshing -> draining")
            session.state = RefreshState.DRAINING
            try:
                await self._drain(session, token_pair.access_token)
            except asyncio.CancelledError:
                self._reject_all(session, "Replay cancelled", None)
                raise
        finally:
            if self._session is session:
                self._session = None
            logger.debug("Refresh state: -> idle")

    async def _drain(self, session: RefreshSession, access_token: str) -> None:
        while session.queue:
            pending = session.queue.popleft()
            if pending.future.done():
                continue
            try:
                result = await self._replay(pending.spec, access_token)
            except asyncio.CancelledError:
                if not pending.future.done():
                    pending.future.set_exception(
                        AuthRefreshFailedError("Replay cancelled")
                    )
                raise
            except Exception as e:
                if not pending.future.done():
                    pending.future.set_exception(e)
            else:
                if not pending.future.done():
                    pending.future.set_result(result)

    async def _fail(
        self, session: RefreshSession, message: str, cause: BaseException
    ) -> None:
        logger.warning(f"{message}: {type(cause).__name__}; clearing stored tokens")
        try:
            await self._storage.clear_tokens()
        except Exception as e:
            logger.error(f"Failed to clear tokens after refresh failure: {e}")
        self._reject_all(session, message, cause)

    def _reject_all(
        self, session: RefreshSession, message: str, cause: Optional[BaseException]
    ) -> None:
        while session.queue:
            pending = session.queue.popleft()
            if not pending.future.done():
                pending.future.set_exception(
                    AuthRefreshFailedError(message, cause=cause)
                )
