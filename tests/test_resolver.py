"""
Tests for stream resolution through the cache.
"""

import asyncio
import os
import shutil
import tempfile
import unittest

from fakes import FakeExtractor, FakeTranscoder, make_song

from src.music.cache import FileCache
from src.music.errors import NoSuitableFormat, StreamError
from src.music.models import MediaSource
from src.music.resolver import StreamResolver, cache_key
from src.music.transcoder import RECONNECT_OPTIONS


class FailingTranscoder(FakeTranscoder):
    def transcode(self, source, input_options=None, volume_adjustment=None):
        raise StreamError("ffmpeg не найден")


class TestStreamResolver(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.loop = asyncio.get_running_loop()
        self.tmp = tempfile.mkdtemp()
        self.cache = FileCache(self.tmp)
        self.extractor = FakeExtractor()
        self.transcoder = FakeTranscoder()
        self.resolver = StreamResolver(self.cache, self.extractor, self.transcoder)
        self.song = make_song('a', url='https://www.youtube.com/watch?v=a')

    async def asyncTearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    async def drain(self, stream):
        data = await self.loop.run_in_executor(None, stream.read, -1)
        stream.wait_cache(5)
        stream.close()
        return data

    async def test_miss_fetches_and_caches(self):
        stream = await self.resolver.resolve(self.song)
        self.assertEqual(await self.drain(stream), b'audio-bytes')

        call = self.transcoder.calls[0]
        self.assertEqual(call.source, 'https://cdn/251')
        self.assertEqual(call.input_options, RECONNECT_OPTIONS)
        self.assertEqual(self.extractor.calls, [self.song.url])

        path = await self.cache.get_path_for(cache_key(self.song.url))
        self.assertIsNotNone(path)

    async def test_second_resolve_hits_cache(self):
        await self.drain(await self.resolver.resolve(self.song))

        stream = await self.resolver.resolve(self.song)
        self.assertTrue(self.cache.is_in_use(cache_key(self.song.url)))
        await self.drain(stream)

        self.assertEqual(len(self.extractor.calls), 1)
        self.assertEqual(
            self.transcoder.calls[-1].source,
            os.path.join(self.cache.cache_dir, cache_key(self.song.url))
        )
        self.assertEqual(self.transcoder.calls[-1].input_options, [])
        self.assertFalse(self.cache.is_in_use(cache_key(self.song.url)))

    async def test_seek_is_not_cached(self):
        await self.drain(await self.resolver.resolve(self.song, seek=30))

        self.assertIn('-ss', self.transcoder.calls[0].input_options)
        self.assertIsNone(await self.cache.get_path_for(cache_key(self.song.url)))

    async def test_trimmed_resolve_is_not_cached(self):
        await self.drain(await self.resolver.resolve(self.song, to=30))

        self.assertEqual(self.transcoder.calls[0].input_options, RECONNECT_OPTIONS + ['-to', '30'])
        self.assertIsNone(await self.cache.get_path_for(cache_key(self.song.url)))

    async def test_live_is_not_cached(self):
        self.extractor.info = dict(self.extractor.info, is_live=True)

        await self.drain(await self.resolver.resolve(self.song))

        self.assertIsNone(await self.cache.get_path_for(cache_key(self.song.url)))

    async def test_long_video_is_not_cached(self):
        self.extractor.info = dict(self.extractor.info, duration=45 * 60)

        await self.drain(await self.resolver.resolve(self.song))

        self.assertIsNone(await self.cache.get_path_for(cache_key(self.song.url)))

    async def test_hls_streams_directly(self):
        song = make_song('radio', url='https://example.com/live.m3u8', length=0,
                         is_live=True, source=MediaSource.HLS)

        await self.drain(await self.resolver.resolve(song))

        self.assertEqual(self.extractor.calls, [])
        self.assertEqual(self.transcoder.calls[0].source, song.url)

    async def test_no_suitable_format(self):
        self.extractor.info = {'duration': 100, 'formats': []}
        with self.assertRaises(NoSuitableFormat):
            await self.resolver.resolve(self.song)
        self.assertEqual(self.transcoder.calls, [])

    async def test_transcoder_failure_is_stream_error(self):
        resolver = StreamResolver(self.cache, self.extractor, FailingTranscoder())
        with self.assertRaises(StreamError):
            await resolver.resolve(self.song)
        self.assertFalse(self.cache.is_in_use(cache_key(self.song.url)))

    async def test_empty_output_is_stream_error(self):
        self.transcoder.data = b''
        self.transcoder.returncode = 1
        with self.assertRaises(StreamError):
            await self.resolver.resolve(self.song)


if __name__ == '__main__':
    unittest.main()
