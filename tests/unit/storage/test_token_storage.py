"""Unit tests for the token storage backends."""

import asyncio
import contextlib
import fcntl
import json
import stat

import pytest

from neko_request.storage import (
    FileTokenStorage,
    MemoryTokenStorage,
    TokenStorage,
    TokenStorageError,
)


class TestMemoryTokenStorage:
    """Test the in-process token store."""

    @pytest.mark.asyncio
    async def test_set_get_and_clear(self):
        storage = MemoryTokenStorage()
        assert await storage.get_access_token() is None
        assert await storage.get_refresh_token() is None

        await storage.set_access_token("A1")
        await storage.set_refresh_token("R1")
        assert await storage.get_access_token() == "A1"
        assert await storage.get_refresh_token() == "R1"

        await storage.clear_tokens()
        assert await storage.get_access_token() is None
        assert await storage.get_refresh_token() is None

    def test_satisfies_protocol(self):
        assert isinstance(MemoryTokenStorage(), TokenStorage)
        assert isinstance(FileTokenStorage(), TokenStorage)


class TestFileTokenStorage:
    """Test the file-backed token store."""

    @pytest.fixture
    def token_path(self, tmp_path):
        return tmp_path / ".neko-request" / "tokens.json"

    @pytest.mark.asyncio
    async def test_missing_file_reads_as_empty(self, token_path):
        storage = FileTokenStorage(token_path)

        assert await storage.get_access_token() is None
        assert await storage.get_refresh_token() is None
        assert not token_path.exists()

    @pytest.mark.asyncio
    async def test_tokens_persist_across_instances(self, token_path):
        await FileTokenStorage(token_path).set_access_token("A1")
        await FileTokenStorage(token_path).set_refresh_token("R1")

        reopened = FileTokenStorage(token_path)
        assert await reopened.get_access_token() == "A1"
        assert await reopened.get_refresh_token() == "R1"
        assert json.loads(token_path.read_text()) == {
            "access_token": "A1",
            "refresh_token": "R1",
        }

    @pytest.mark.asyncio
    async def test_file_written_with_secure_permissions(self, token_path):
        await FileTokenStorage(token_path).set_access_token("A1")

        assert stat.S_IMODE(token_path.stat().st_mode) == 0o600
        assert list(token_path.parent.iterdir()) == [token_path]

    @pytest.mark.asyncio
    async def test_loose_permissions_are_tightened_on_read(self, token_path):
        token_path.parent.mkdir(parents=True)
        token_path.write_text(json.dumps({"access_token": "A1"}))
        token_path.chmod(0o644)

        assert await FileTokenStorage(token_path).get_access_token() == "A1"
        assert stat.S_IMODE(token_path.stat().st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_clear_removes_file(self, token_path):
        storage = FileTokenStorage(token_path)
        await storage.set_access_token("A1")

        await storage.clear_tokens()
        await storage.clear_tokens()

        assert not token_path.exists()
        assert await storage.get_access_token() is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
    async def test_corrupt_file_raises(self, token_path, content):
        token_path.parent.mkdir(parents=True)
        token_path.write_text(content)

        with pytest.raises(TokenStorageError, match="Corrupt token file"):
            await FileTokenStorage(token_path).get_access_token()

    @pytest.mark.asyncio
    async def test_oversized_file_raises(self, token_path):
        token_path.parent.mkdir(parents=True)
        token_path.write_text(" " * (FileTokenStorage.MAX_FILE_SIZE + 1))

        with pytest.raises(TokenStorageError, match="exceeds 64KB"):
            await FileTokenStorage(token_path).get_refresh_token()

    @pytest.mark.asyncio
    async def test_write_leaves_other_writers_temp_files_alone(self, token_path):
        token_path.parent.mkdir(parents=True)
        other_writer_temp = token_path.with_suffix(".tmp")
        other_writer_temp.write_text('{"access_token": "half-writ')

        await FileTokenStorage(token_path).set_access_token("A1")

        assert other_writer_temp.read_text() == '{"access_token": "half-writ'
        assert json.loads(token_path.read_text()) == {"access_token": "A1"}
        assert sorted(token_path.parent.iterdir()) == sorted(
            [token_path, other_writer_temp]
        )

    @pytest.mark.asyncio
    async def test_lock_wait_keeps_event_loop_running(self, token_path):
        storage = FileTokenStorage(token_path, lock_timeout_seconds=1)
        await storage.set_access_token("A1")
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.05)
                ticks += 1

        with open(token_path) as other_process_handle:
            fcntl.flock(other_process_handle.fileno(), fcntl.LOCK_EX)
            ticker_task = asyncio.create_task(ticker())
            try:
                with pytest.raises(TokenStorageError, match="file lock"):
                    await storage.get_access_token()
            finally:
                ticker_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await ticker_task
                fcntl.flock(other_process_handle.fileno(), fcntl.LOCK_UN)

        assert ticks >= 5
