"""Tests for the copy buffer pool and buffered sink"""

import pytest

from warp.transfer.buffers import BufferedSink, BufferPool


class FakeFile:
    """Records every write as bytes"""

    def __init__(self):
        self.writes = []

    async def write(self, data):
        self.writes.append(bytes(data))
        return len(data)

    @property
    def data(self) -> bytes:
        return b''.join(self.writes)


class TestBufferPool:
    """Test buffer pool"""

    def test_buffer_size(self):
        pool = BufferPool(buffer_size=1024)
        with pool.borrow() as buf:
            assert len(buf) == 1024

    def test_buffers_are_reused(self):
        pool = BufferPool(buffer_size=64)
        with pool.borrow() as first:
            pass
        with pool.borrow() as second:
            assert second is first
        assert pool.stats()['created'] == 1

    def test_concurrent_borrows_get_distinct_buffers(self):
        pool = BufferPool(buffer_size=64)
        with pool.borrow() as a, pool.borrow() as b:
            assert a is not b
            assert pool.stats()['borrowed'] == 2
        assert pool.stats()['borrowed'] == 0
        assert pool.stats()['idle'] == 2

    def test_released_on_exception(self):
        pool = BufferPool(buffer_size=64)
        with pytest.raises(RuntimeError):
            with pool.borrow():
                raise RuntimeError("copy failed")
        stats = pool.stats()
        assert stats['borrowed'] == 0
        assert stats['idle'] == 1

    def test_max_idle(self):
        pool = BufferPool(buffer_size=64, max_idle=2)
        with pool.borrow(), pool.borrow(), pool.borrow():
            pass
        assert pool.stats()['idle'] == 2

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            BufferPool(buffer_size=0)


class TestBufferedSink:
    """Test chunk coalescing"""

    @pytest.mark.asyncio
    async def test_small_writes_coalesced(self):
        f = FakeFile()
        sink = BufferedSink(f, bytearray(16))
        for _ in range(10):
            await sink.write(b"abc")
        await sink.flush()

        assert f.data == b"abc" * 10
        assert [len(w) for w in f.writes] == [16, 14]
        assert sink.written == 30

    @pytest.mark.asyncio
    async def test_large_write_split_into_buffer_sized_pieces(self):
        f = FakeFile()
        sink = BufferedSink(f, bytearray(8))
        await sink.write(bytes(range(20)))
        await sink.flush()

        assert f.data == bytes(range(20))
        assert [len(w) for w in f.writes] == [8, 8, 4]

    @pytest.mark.asyncio
    async def test_flush_without_data_writes_nothing(self):
        f = FakeFile()
        sink = BufferedSink(f, bytearray(8))
        await sink.flush()
        assert f.writes == []
        assert sink.written == 0
