"""
Copy Buffer Pool

Design Decision: Buffer Reuse
=============================

Options Considered:
1. Allocate a fresh buffer per chunk
   - Simple, but churns memory on multi-GB uploads
2. One buffer per request, allocated per request
   - Better, but every concurrent upload still allocates
3. Shared pool of fixed-size buffers
   - Buffers are borrowed for one copy and returned afterwards

Decision: Shared pool with scoped borrowing
- ``with pool.borrow() as buf:`` returns the buffer on every exit path,
  exceptions included, so a failing copy never leaks a buffer
- At most ``max_idle`` buffers are kept; extra ones are dropped on return
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List

from .protocol import BUFFER_SIZE

logger = logging.getLogger(__name__)


class BufferPool:
    """Bounded pool of reusable ``bytearray`` copy buffers."""

    def __init__(self, buffer_size: int = BUFFER_SIZE, max_idle: int = 16):
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self.buffer_size = buffer_size
        self.max_idle = max_idle

        self._idle: List[bytearray] = []
        self._lock = threading.Lock()

        # Statistics
        self.created = 0
        self.borrowed = 0

    def _acquire(self) -> bytearray:
        with self._lock:
            self.borrowed += 1
            if self._idle:
                return self._idle.pop()
            self.created += 1
        return bytearray(self.buffer_size)

    def _release(self, buf: bytearray):
        with self._lock:
            self.borrowed -= 1
            if len(buf) == self.buffer_size and len(self._idle) < self.max_idle:
                self._idle.append(buf)

    @contextmanager
    def borrow(self) -> Iterator[bytearray]:
        """Borrow a buffer for the duration of one copy."""
        buf = self._acquire()
        try:
            yield buf
        finally:
            self._release(buf)

    def stats(self) -> dict:
        with self._lock:
            return {
                'buffer_size': self.buffer_size,
                'created': self.created,
                'idle': len(self._idle),
                'borrowed': self.borrowed,
            }


class BufferedSink:
    """
    Coalesces incoming network chunks into a pooled buffer and flushes it to
    an aiofiles handle whenever it fills up.

    Nothing beyond one buffer is ever held in memory.
    """

    def __init__(self, file, buffer: bytearray):
        self._file = file
        self._buffer = buffer
        self._view = memoryview(buffer)
        self._fill = 0
        self.written = 0

    async def write(self, data: bytes):
        data = memoryview(data)
        while data:
            room = len(self._buffer) - self._fill
            take = min(room, len(data))
            self._view[self._fill:self._fill + take] = data[:take]
            self._fill += take
            data = data[take:]
            if self._fill == len(self._buffer):
                await self.flush()

    async def flush(self):
        if self._fill:
            await self._file.write(self._view[:self._fill])
            self.written += self._fill
            self._fill = 0
