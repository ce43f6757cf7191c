"""
Tests for format selection and ffmpeg argument building.
"""

import unittest

from src.music.errors import NoSuitableFormat
from src.music.resolver import cache_key, is_cacheable, seek_options
from src.music.transcoder import OUTPUT_OPTIONS, AudioTranscoder
from src.music.youtube import choose_format, loudness_adjustment


class TestChooseFormat(unittest.TestCase):
    def test_prefers_opus_webm_48k(self):
        info = {'formats': [
            {'format_id': '140', 'url': 'u140', 'acodec': 'mp4a.40.2', 'ext': 'm4a', 'abr': 256},
            {'format_id': '251', 'url': 'u251', 'acodec': 'opus', 'ext': 'webm', 'asr': 48000, 'abr': 130},
        ]}
        self.assertEqual(choose_format(info)['format_id'], '251')

    def test_live_picks_highest_bitrate_known_itag(self):
        info = {'is_live': True, 'formats': [
            {'format_id': '91', 'url': 'u91', 'abr': 48},
            {'format_id': '94', 'url': 'u94', 'abr': 128},
            {'format_id': '300', 'url': 'u300', 'abr': 256},
            {'format_id': '93', 'url': 'u93', 'abr': 128.5},
        ]}
        self.assertEqual(choose_format(info)['format_id'], '93')

    def test_live_without_known_itag(self):
        info = {'is_live': True, 'formats': [{'format_id': '300', 'url': 'u', 'abr': 256}]}
        with self.assertRaises(NoSuitableFormat):
            choose_format(info)

    def test_prefers_format_without_total_bitrate(self):
        info = {'formats': [
            {'format_id': '18', 'url': 'u18', 'acodec': 'mp4a', 'abr': 160, 'tbr': 500},
            {'format_id': '140', 'url': 'u140', 'acodec': 'mp4a', 'abr': 128},
            {'format_id': '139', 'url': 'u139', 'acodec': 'mp4a', 'abr': 48},
        ]}
        self.assertEqual(choose_format(info)['format_id'], '140')

    def test_falls_back_to_highest_bitrate(self):
        info = {'formats': [
            {'format_id': '18', 'url': 'u18', 'acodec': 'mp4a', 'abr': 96, 'tbr': 500},
            {'format_id': '22', 'url': 'u22', 'acodec': 'mp4a', 'abr': 192, 'tbr': 900},
        ]}
        self.assertEqual(choose_format(info)['format_id'], '22')

    def test_no_formats(self):
        with self.assertRaises(NoSuitableFormat):
            choose_format({'formats': []})

    def test_video_only_formats(self):
        info = {'formats': [{'format_id': '137', 'url': 'u', 'acodec': 'none', 'abr': 0}]}
        with self.assertRaises(NoSuitableFormat):
            choose_format(info)


class TestLoudness(unittest.TestCase):
    def test_reported_loudness_is_compensated(self):
        self.assertEqual(loudness_adjustment({'loudness_db': 3.5}), '-3.5dB')
        self.assertEqual(loudness_adjustment({'loudness_db': -2.0}), '2.0dB')

    def test_missing_loudness(self):
        self.assertIsNone(loudness_adjustment({}))


class TestCacheRules(unittest.TestCase):
    def test_cache_key_is_sha512_hex(self):
        key = cache_key('https://www.youtube.com/watch?v=a')
        self.assertEqual(len(key), 128)
        self.assertEqual(key, cache_key('https://www.youtube.com/watch?v=a'))
        self.assertNotEqual(key, cache_key('https://www.youtube.com/watch?v=b'))

    def test_is_cacheable(self):
        self.assertTrue(is_cacheable({'duration': 200}))
        self.assertFalse(is_cacheable({'duration': 200}, seek=10))
        self.assertFalse(is_cacheable({'duration': 200}, to=30))
        self.assertFalse(is_cacheable({'duration': 200, 'is_live': True}))
        self.assertFalse(is_cacheable({'duration': 30 * 60}))
        self.assertFalse(is_cacheable({}))

    def test_seek_options(self):
        self.assertEqual(seek_options(), [])
        self.assertEqual(seek_options(30, 90), ['-ss', '30', '-to', '90'])


class TestTranscoderArgs(unittest.TestCase):
    def setUp(self):
        self.transcoder = AudioTranscoder('ffmpeg')

    def test_default_input_is_realtime(self):
        args = self.transcoder.build_args('/cache/key')

        self.assertEqual(args[:5], ['ffmpeg', '-hide_banner', '-loglevel', 'error', '-re'])
        self.assertIn('volume=1', args)
        self.assertEqual(args[-1], 'pipe:1')

    def test_input_options_and_volume(self):
        args = self.transcoder.build_args('https://cdn/a', ['-ss', '10'], '-3.5dB')

        self.assertNotIn('-re', args)
        self.assertLess(args.index('-ss'), args.index('-i'))
        self.assertIn('volume=-3.5dB', args)
        for option in OUTPUT_OPTIONS:
            self.assertIn(option, args)


if __name__ == '__main__':
    unittest.main()
