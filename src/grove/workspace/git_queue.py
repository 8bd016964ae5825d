"""Per-repository serialization of git operations.

Worktree creation, branch creation and deletion, fetches and merges all
touch state that every worktree of a repository shares (refs, the worktree
list, ``.git/config``).  Running two of them concurrently against the same
repository corrupts that state or fails with lock errors, so those calls
are chained per repository path.  Read-only queries bypass the queue.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GitOperationQueue:
    """FIFO chain of async operations per repository key.

    One instance per application; pass it to everything that mutates a
    repository.  An operation starts only after every operation queued
    earlier for the same key has settled, whether it succeeded or failed.
    Operations for different keys never wait on each other.
    """

    def __init__(self) -> None:
        self._tails: dict[str, asyncio.Future[None]] = {}

    @staticmethod
    def key_for(repo_path: str | os.PathLike) -> str:
        return os.path.realpath(os.fspath(repo_path))

    def is_busy(self, repo_path: str | os.PathLike) -> bool:
        """Whether any operation is queued or running for ``repo_path``."""
        return self.key_for(repo_path) in self._tails

    @property
    def active_keys(self) -> list[str]:
        return list(self._tails)

    async def shared(self, repo_path: str | os.PathLike, op: Callable[[], Awaitable[T]]) -> T:
        """Run ``op`` after all earlier operations queued for ``repo_path``.

        The result or exception of ``op`` is returned or raised to this caller
        only; it never affects the operations queued behind it.
        """
        key = self.key_for(repo_path)
        previous = self._tails.get(key)
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._tails[key] = done

        def _release(_: object = None) -> None:
            if not done.done():
                done.set_result(None)
            if self._tails.get(key) is done:
                del self._tails[key]

        try:
            if previous is not None:
                await asyncio.shield(previous)
            return await op()
        finally:
            if previous is not None and not previous.done():
                # Cancelled while waiting: keep the chain ordered.
                previous.add_done_callback(_release)
            else:
                _release()

    async def local(self, op: Callable[[], Awaitable[T]]) -> T:
        """Run a read-only operation immediately, bypassing the chain."""
        return await op()
