"""
Reader/writer lock for trio tasks.

Any number of readers may hold the lock at once; a writer holds it alone.
Waiting writers block new readers so a steady stream of listings cannot
starve a commit.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import trio


class RWLock:
    """Shared/exclusive lock built on a trio.Condition."""

    def __init__(self):
        self._cond = trio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def write_held(self) -> bool:
        return self._writer

    @asynccontextmanager
    async def read_locked(self) -> AsyncIterator[None]:
        async with self._cond:
            while self._writer or self._writers_waiting:
                await self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with trio.CancelScope(shield=True):
                async with self._cond:
                    self._readers -= 1
                    if self._readers == 0:
                        self._cond.notify_all()

    @asynccontextmanager
    async def write_locked(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            acquired = False
            try:
                while self._writer or self._readers:
                    await self._cond.wait()
                acquired = True
            finally:
                self._writers_waiting -= 1
                if not acquired:
                    # Cancelled while queued: let blocked readers re-check
                    self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            with trio.CancelScope(shield=True):
                async with self._cond:
                    self._writer = False
                    self._cond.notify_all()
