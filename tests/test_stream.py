"""
Tests for the ffmpeg output fan-out.
"""

import asyncio
import shutil
import tempfile
import threading
import unittest

from fakes import FakeProcess

from src.music.cache import FileCache
from src.music.errors import CacheWriteError, StreamError
from src.music.stream import FanOutStream


class GatedStdout:
    """Returns the first chunk immediately and EOF only once the gate opens"""

    def __init__(self, chunk):
        self.chunk = chunk
        self.gate = threading.Event()
        self.sent = False

    def read1(self, size):
        if not self.sent:
            self.sent = True
            return self.chunk
        self.gate.wait(5)
        return b''


class FailingCacheStream:
    """Cache writer whose every write fails once the gate opens"""

    def __init__(self, open_gate=True):
        self.gate = threading.Event()
        if open_gate:
            self.gate.set()
        self.aborted = False
        self.committed = False

    def write(self, chunk):
        self.gate.wait(5)
        raise CacheWriteError("Нет места на диске")

    def abort(self):
        self.aborted = True

    def commit(self):
        self.committed = True


def read_in_pieces(stream, size):
    parts = []
    while True:
        part = stream.read(size)
        if not part:
            return b''.join(parts)
        parts.append(part)


class TestFanOutStream(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.loop = asyncio.get_running_loop()
        self.tmp = tempfile.mkdtemp()
        self.cache = FileCache(self.tmp)

    async def asyncTearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    async def open(self, process, **kwargs):
        stream = FanOutStream(process, loop=self.loop, **kwargs)
        stream.start()
        await stream.started
        return stream

    async def read_all(self, stream):
        return await self.loop.run_in_executor(None, stream.read, -1)

    async def test_reads_all_output(self):
        stream = await self.open(FakeProcess(b'opus-data'))
        self.assertEqual(await self.read_all(stream), b'opus-data')

    async def test_sized_reads(self):
        stream = await self.open(FakeProcess(b'abcdef'))
        first = await self.loop.run_in_executor(None, stream.read, 4)
        rest = await self.loop.run_in_executor(None, stream.read, 4)
        self.assertEqual((first, rest), (b'abcd', b'ef'))

    async def test_no_output_fails_start(self):
        stream = FanOutStream(FakeProcess(b'', returncode=1), loop=self.loop)
        stream.start()
        with self.assertRaises(StreamError):
            await stream.started

    async def test_complete_output_is_committed_to_cache(self):
        cache_stream = self.cache.create_write_stream('key')
        stream = await self.open(FakeProcess(b'opus-data'), cache_stream=cache_stream)

        await self.read_all(stream)
        self.assertTrue(stream.wait_cache(5))

        path = await self.cache.get_path_for('key')
        with open(path, 'rb') as f:
            self.assertEqual(f.read(), b'opus-data')

    async def test_failed_output_is_not_cached(self):
        cache_stream = self.cache.create_write_stream('key')
        stream = await self.open(FakeProcess(b'partial', returncode=1), cache_stream=cache_stream)

        await self.read_all(stream)
        self.assertTrue(stream.wait_cache(5))

        self.assertIsNone(await self.cache.get_path_for('key'))

    async def test_close_kills_process_without_cache(self):
        closed = []
        process = FakeProcess(running=True)
        process.stdout = GatedStdout(b'opus')
        stream = await self.open(process, on_close=lambda: closed.append(True))

        stream.close()
        process.stdout.gate.set()

        self.assertTrue(process.killed)
        self.assertTrue(stream.killed)
        self.assertEqual(closed, [True])
        self.assertEqual(stream.read(10), b'')

    async def test_close_lets_cache_write_finish(self):
        process = FakeProcess(running=True)
        process.stdout = GatedStdout(b'opus')
        cache_stream = self.cache.create_write_stream('key')
        stream = await self.open(process, cache_stream=cache_stream)

        stream.close()
        self.assertFalse(process.killed)

        process.running = False
        process.stdout.gate.set()
        self.assertTrue(stream.wait_cache(5))

        self.assertIsNotNone(await self.cache.get_path_for('key'))

    async def test_cache_write_failure_keeps_playback(self):
        process = FakeProcess(b'opus-data', running=True)
        cache_stream = FailingCacheStream()
        stream = await self.open(process, cache_stream=cache_stream)

        self.assertTrue(await self.loop.run_in_executor(None, stream.wait_cache, 5))
        self.assertTrue(cache_stream.aborted)
        self.assertFalse(cache_stream.committed)
        self.assertFalse(stream.caching)

        self.assertEqual(await self.read_all(stream), b'opus-data')
        self.assertFalse(process.killed)

        stream.close()
        self.assertTrue(process.killed)

    async def test_cache_write_failure_after_close_kills_process(self):
        process = FakeProcess(running=True)
        process.stdout = GatedStdout(b'opus')
        cache_stream = FailingCacheStream(open_gate=False)
        stream = await self.open(process, cache_stream=cache_stream)

        stream.close()
        self.assertFalse(process.killed)

        cache_stream.gate.set()
        process.stdout.gate.set()
        self.assertTrue(await self.loop.run_in_executor(None, stream.wait_cache, 5))

        self.assertTrue(cache_stream.aborted)
        self.assertTrue(process.killed)

    async def wait_for_pump(self, process, at_least):
        for _ in range(200):
            if process.stdout.tell() >= at_least:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)

    async def test_buffer_is_bounded_without_reader(self):
        data = bytes(range(256)) * 4096
        process = FakeProcess(data)
        stream = FanOutStream(process, loop=self.loop)
        stream.MAX_BUFFER = 64 * 1024
        stream.start()
        await stream.started

        await self.wait_for_pump(process, stream.MAX_BUFFER)

        self.assertLessEqual(stream.buffered, stream.MAX_BUFFER)
        self.assertEqual(stream.spilled, 0)
        self.assertLess(process.stdout.tell(), len(data))

        received = await self.loop.run_in_executor(None, read_in_pieces, stream, 4096)
        self.assertEqual(received, data)

    async def test_overflow_spills_to_disk_while_caching(self):
        data = bytes(range(256)) * 4096
        cache_stream = self.cache.create_write_stream('key')
        stream = FanOutStream(FakeProcess(data), loop=self.loop, cache_stream=cache_stream)
        stream.MAX_BUFFER = 64 * 1024
        stream.start()
        await stream.started

        # The cache completes even though playback has read nothing yet
        self.assertTrue(await self.loop.run_in_executor(None, stream.wait_cache, 5))

        self.assertLessEqual(stream.buffered, stream.MAX_BUFFER)
        self.assertEqual(stream.buffered + stream.spilled, len(data))

        received = await self.loop.run_in_executor(None, read_in_pieces, stream, 4096)
        self.assertEqual(received, data)
        self.assertEqual(stream.spilled, 0)

        path = await self.cache.get_path_for('key')
        with open(path, 'rb') as f:
            self.assertEqual(f.read(), data)


if __name__ == '__main__':
    unittest.main()
