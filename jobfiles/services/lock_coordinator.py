"""
Lock Coordinator - advisory mutual exclusion over a single marker file.

Serializes version-suffix assignment between coroutines of this process and,
best-effort, between processes on the same machine sharing the managed folder.

The marker is created atomically with O_CREAT | O_EXCL and records the owner
pid, hostname, a per-acquisition token and the acquisition time. A marker is
stale when:
- it cannot be parsed,
- its owner pid is not alive on this host, or
- it is older than lock_max_age_seconds.
"""

import asyncio
import json
import os
import socket
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional
from uuid import uuid4

import structlog

from jobfiles.config import Settings, get_settings
from jobfiles.exceptions import LockTimeout


@dataclass(frozen=True)
class LockHandle:
    """Proof of lock ownership returned by acquire()."""
    token: str
    pid: int
    hostname: str
    acquired_at: float
    lock_path: Path


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    except OSError:
        return False
    return True


class LockCoordinator:
    """Advisory, timeout-bounded lock over one marker file."""

    def __init__(
        self,
        lock_path: Optional[Path] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.lock_path = Path(lock_path or self.settings.lock_path)
        self.retry_interval = self.settings.lock_retry_interval_seconds
        self.max_age = self.settings.lock_max_age_seconds
        self.logger = structlog.get_logger("lock_coordinator")

    # -------------------------------------------------------------------------
    # Acquisition
    # -------------------------------------------------------------------------

    def _try_create(self, handle: LockHandle) -> bool:
        """Atomically create the marker. Returns False if it already exists."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False

        try:
            os.write(fd, json.dumps({
                "pid": handle.pid,
                "hostname": handle.hostname,
                "token": handle.token,
                "acquired_at": handle.acquired_at,
            }).encode("utf-8"))
            os.fsync(fd)
        finally:
            os.close(fd)
        return True

    def _read_marker(self, path: Optional[Path] = None) -> Optional[dict]:
        try:
            with open(path or self.lock_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, UnicodeDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def is_stale(self, marker: dict) -> bool:
        """Decide whether an existing marker may be broken."""
        if not marker or "pid" not in marker:
            return True

        acquired_at = marker.get("acquired_at")
        if isinstance(acquired_at, (int, float)) and time.time() - acquired_at > self.max_age:
            return True

        if marker.get("hostname") not in (None, socket.gethostname()):
            # Remote owner: only the age policy applies
            return False

        try:
            return not _pid_alive(int(marker["pid"]))
        except (TypeError, ValueError):
            return True

    def _break_if_stale(self) -> None:
        """
        Remove a stale marker without ever deleting a live one.

        The marker is renamed to a unique name before it is judged again, so
        a marker another process created after the first read is never
        unlinked. If the renamed marker turns out to be live it is linked
        back into place.
        """
        marker = self._read_marker()
        if marker is None or not self.is_stale(marker):
            return

        aside = self.lock_path.with_name(f"{self.lock_path.name}.stale-{uuid4().hex}")
        try:
            os.rename(self.lock_path, aside)
        except FileNotFoundError:
            return

        moved = self._read_marker(aside)
        if moved is not None and not self.is_stale(moved):
            try:
                # link() fails instead of replacing a marker created meanwhile
                os.link(aside, self.lock_path)
                self.logger.info("live_lock_restored", lock_path=str(self.lock_path), token=moved.get("token"))
            except OSError as e:
                self.logger.error(
                    "live_lock_displaced",
                    lock_path=str(self.lock_path),
                    token=moved.get("token"),
                    error=str(e),
                )
            aside.unlink(missing_ok=True)
            return

        self.logger.warning(
            "stale_lock_removed",
            lock_path=str(self.lock_path),
            owner_pid=(moved or marker).get("pid"),
        )
        aside.unlink(missing_ok=True)

    async def acquire(self, timeout: Optional[float] = None) -> LockHandle:
        """
        Acquire the lock, polling until timeout.

        Args:
            timeout: Seconds to wait (defaults to settings.lock_timeout_seconds)

        Returns:
            LockHandle to pass to release()

        Raises:
            LockTimeout: If the marker could not be created in time
        """
        timeout = self.settings.lock_timeout_seconds if timeout is None else timeout
        token = str(uuid4())
        pid = os.getpid()
        hostname = socket.gethostname()

        deadline = time.monotonic() + timeout
        while True:
            handle = LockHandle(
                token=token,
                pid=pid,
                hostname=hostname,
                acquired_at=time.time(),
                lock_path=self.lock_path,
            )
            if self._try_create(handle):
                self.logger.debug("lock_acquired", lock_path=str(self.lock_path), token=handle.token)
                return handle

            self._break_if_stale()

            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(self.retry_interval)

        self.logger.error("lock_timeout", lock_path=str(self.lock_path), timeout=timeout)
        raise LockTimeout(
            f"Could not acquire version lock {self.lock_path} within {timeout}s"
        )

    def release(self, handle: LockHandle) -> bool:
        """
        Remove the marker if it still carries the caller's token.

        Returns:
            True if the marker was removed
        """
        marker = self._read_marker()
        if not marker or marker.get("token") != handle.token:
            self.logger.warning(
                "lock_not_held",
                lock_path=str(self.lock_path),
                token=handle.token,
            )
            return False

        self.lock_path.unlink(missing_ok=True)
        self.logger.debug("lock_released", lock_path=str(self.lock_path), token=handle.token)
        return True

    def is_held(self, handle: LockHandle) -> bool:
        marker = self._read_marker()
        return bool(marker) and marker.get("token") == handle.token

    @asynccontextmanager
    async def hold(self, timeout: Optional[float] = None) -> AsyncIterator[LockHandle]:
        """
        Hold the lock for the duration of the block.

        Usage:
            async with coordinator.hold() as handle:
                ...
        """
        handle = await self.acquire(timeout)
        try:
            yield handle
        finally:
            self.release(handle)
