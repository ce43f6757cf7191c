"""
Tests for the on-disk audio cache.
"""

import os
import shutil
import tempfile
import time
import unittest

from src.music.cache import FileCache
from src.music.errors import CacheWriteError


class TestFileCache(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmp = tempfile.mkdtemp()
        self.cache = FileCache(self.tmp, limit_bytes=1024)

    async def asyncTearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def put(self, key, size, age=0):
        stream = self.cache.create_write_stream(key)
        stream.write(b'x' * size)
        stream.commit()
        path = os.path.join(self.cache.cache_dir, key)
        stamp = time.time() - age
        os.utime(path, (stamp, stamp))
        return path

    async def test_missing_key(self):
        self.assertIsNone(await self.cache.get_path_for('missing'))

    async def test_commit_makes_entry_visible(self):
        stream = self.cache.create_write_stream('abc')
        stream.write(b'data')
        self.assertIsNone(await self.cache.get_path_for('abc'))

        stream.commit()

        path = await self.cache.get_path_for('abc')
        self.assertIsNotNone(path)
        with open(path, 'rb') as f:
            self.assertEqual(f.read(), b'data')
        self.assertFalse(os.path.exists(stream.tmp_path))

    async def test_abort_discards_partial_data(self):
        stream = self.cache.create_write_stream('abc')
        stream.write(b'partial')

        stream.abort()

        self.assertIsNone(await self.cache.get_path_for('abc'))
        self.assertFalse(os.path.exists(stream.tmp_path))
        self.assertFalse(self.cache.is_in_use('abc'))

    async def test_single_writer_per_key(self):
        stream = self.cache.create_write_stream('abc')
        with self.assertRaises(CacheWriteError):
            self.cache.create_write_stream('abc')
        stream.abort()

        self.cache.create_write_stream('abc').abort()

    async def test_readers_mark_key_in_use(self):
        self.cache.acquire('abc')
        self.cache.acquire('abc')
        self.cache.release('abc')
        self.assertTrue(self.cache.is_in_use('abc'))

        self.cache.release('abc')
        self.assertFalse(self.cache.is_in_use('abc'))

    async def test_cleanup_evicts_least_recently_used(self):
        oldest = self.put('oldest', 600, age=300)
        middle = self.put('middle', 600, age=200)
        newest = self.put('newest', 600, age=100)

        await self.cache.cleanup()

        self.assertFalse(os.path.exists(oldest))
        self.assertFalse(os.path.exists(middle))
        self.assertTrue(os.path.exists(newest))

    async def test_cleanup_skips_entries_in_use(self):
        oldest = self.put('oldest', 600, age=300)
        newest = self.put('newest', 600, age=100)
        self.cache.acquire('oldest')

        await self.cache.cleanup()

        self.assertTrue(os.path.exists(oldest))
        self.assertFalse(os.path.exists(newest))

    async def test_cleanup_removes_stale_temp_files(self):
        stale = os.path.join(self.cache.tmp_dir, 'stale')
        with open(stale, 'wb') as f:
            f.write(b'x')
        active = self.cache.create_write_stream('active')

        await self.cache.cleanup()

        self.assertFalse(os.path.exists(stale))
        self.assertTrue(os.path.exists(active.tmp_path))
        active.abort()

    async def test_lookup_refreshes_access_time(self):
        path = self.put('abc', 10, age=1000)
        before = os.path.getmtime(path)

        await self.cache.get_path_for('abc')

        self.assertGreater(os.path.getmtime(path), before)


if __name__ == '__main__':
    unittest.main()
