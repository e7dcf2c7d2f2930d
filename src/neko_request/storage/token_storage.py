"""Credential stores for the authenticated request client.

The client depends only on the ``TokenStorage`` protocol; the in-memory and
file-backed stores below are interchangeable implementations of it.
"""

import asyncio
import fcntl
import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class TokenStorageError(Exception):
    """Raised when token storage operations fail."""

    pass


@runtime_checkable
class TokenStorage(Protocol):
    """Asynchronous access/refresh token store."""

    async def get_access_token(self) -> Optional[str]: ...

    async def set_access_token(self, token: str) -> None: ...

    async def get_refresh_token(self) -> Optional[str]: ...

    async def set_refresh_token(self, token: str) -> None: ...

    async def clear_tokens(self) -> None: ...


class MemoryTokenStorage:
    """Token store that lives only as long as the process."""

    def __init__(
        self, access_token: Optional[str] = None, refresh_token: Optional[str] = None
    ):
        self._access_token = access_token
        self._refresh_token = refresh_token

    async def get_access_token(self) -> Optional[str]:
        return self._access_token

    async def set_access_token(self, token: str) -> None:
        self._access_token = token

    async def get_refresh_token(self) -> Optional[str]:
        return self._refresh_token

    async def set_refresh_token(self, token: str) -> None:
        self._refresh_token = token

    async def clear_tokens(self) -> None:
        self._access_token = None
        self._refresh_token = None


class FileTokenStorage:
    """Token store persisted as JSON on disk.

    Features:
    - Secure file operations with proper permissions (0o600)
    - Atomic writes through a temporary file and rename
    - Advisory file locking for concurrent access from several processes

    File I/O and lock waits run in a worker thread so the event loop keeps
    serving other requests.
    """

    DEFAULT_TOKEN_PATH = Path(".neko-request/tokens.json")
    MAX_FILE_SIZE = 64 * 1024

    def __init__(
        self, token_file_path: Optional[Path] = None, lock_timeout_seconds: int = 5
    ):
        """Initialize file token storage.

        Args:
            token_file_path: Location of the token file
            lock_timeout_seconds: File lock timeout in seconds
        """
        self.token_file_path = Path(token_file_path or self.DEFAULT_TOKEN_PATH)
        self.lock_timeout_seconds = lock_timeout_seconds
        self._lock = threading.RLock()

    async def get_access_token(self) -> Optional[str]:
        return (await asyncio.to_thread(self._read)).get("access_token")

    async def set_access_token(self, token: str) -> None:
        await asyncio.to_thread(self._update, "access_token", token)

    async def get_refresh_token(self) -> Optional[str]:
        return (await asyncio.to_thread(self._read)).get("refresh_token")

    async def set_refresh_token(self, token: str) -> None:
        await asyncio.to_thread(self._update, "refresh_token", token)

    async def clear_tokens(self) -> None:
        await asyncio.to_thread(self._clear)

    def _clear(self) -> None:
        with self._lock:
            try:
                self.token_file_path.unlink(missing_ok=True)
            except OSError as e:
                raise TokenStorageError(f"Failed to clear tokens: {e}")
        logger.debug("Token file cleared")

    def _read(self) -> dict:
        """Read the token file, returning an empty mapping when absent.

        Raises:
            TokenStorageError: If the file is oversized or malformed
        """
        with self._lock:
            if not self.token_file_path.exists():
                return {}

            file_stat = self.token_file_path.stat()
            if file_stat.st_mode & 0o777 != 0o600:
                # Attempt to fix permissions
                self.token_file_path.chmod(0o600)

            if file_stat.st_size > self.MAX_FILE_SIZE:
                raise TokenStorageError(
                    f"Token file size {file_stat.st_size} bytes exceeds 64KB limit"
                )

            try:
                with open(self.token_file_path, "r", encoding="utf-8") as f:
                    self._acquire_file_lock(f, fcntl.LOCK_SH)
                    try:
                        raw = f.read()
                    finally:
                        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
            except OSError as e:
                raise TokenStorageError(f"Failed to read token file: {e}")

            if not raw.strip():
                return {}
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as e:
                raise TokenStorageError(f"Corrupt token file {self.token_file_path}: {e}")
            if not isinstance(data, dict):
                raise TokenStorageError(
                    f"Corrupt token file {self.token_file_path}: expected an object"
                )
            return data

    def _update(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._atomic_file_write(json.dumps(data))

    def _atomic_file_write(self, content: str) -> None:
        """Write the token file atomically.

        Raises:
            TokenStorageError: If atomic write fails
        """
        self.token_file_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        # Unique per writer; mkstemp creates it with 0o600
        try:
            tmp_fd, tmp_path = tempfile.mkstemp(
                dir=str(self.token_file_path.parent),
                prefix=f".{self.token_file_path.name}_",
                suffix=".tmp",
            )
        except OSError as e:
            raise TokenStorageError(f"Atomic file write failed: {e}")

        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())

            os.replace(tmp_path, str(self.token_file_path))
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise TokenStorageError(f"Atomic file write failed: {e}")

    def _acquire_file_lock(self, file_handle, operation: int) -> None:
        """Acquire a file lock with timeout.

        Raises:
            TokenStorageError: If lock acquisition times out
        """
        start_time = time.time()
        while True:
            try:
                fcntl.flock(file_handle.fileno(), operation | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.time() - start_time >= self.lock_timeout_seconds:
                    raise TokenStorageError(
                        f"Failed to acquire file lock within {self.lock_timeout_seconds} seconds"
                    )
                time.sleep(0.1)
