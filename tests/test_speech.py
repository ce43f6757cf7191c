"""
Tests for speaking-member tracking.
"""

import unittest

from src.music.speech import SpeechActivityMonitor


class TestSpeechActivityMonitor(unittest.TestCase):
    def setUp(self):
        self.monitor = SpeechActivityMonitor()

    def test_tracks_members_per_channel(self):
        self.monitor.speaking_start(1, 5)
        self.monitor.speaking_start(1, 6)
        self.monitor.speaking_start(2, 7)

        self.assertEqual(self.monitor.speaking_in(1), {5, 6})
        self.assertEqual(self.monitor.speaking_in(2), {7})

    def test_end_removes_member(self):
        self.monitor.speaking_start(1, 5)
        self.monitor.speaking_end(1, 5)
        self.monitor.speaking_end(1, 6)

        self.assertFalse(self.monitor.is_anyone_speaking(1))

    def test_target_volume(self):
        self.assertIsNone(self.monitor.target_volume(1, None, 80))
        self.assertEqual(self.monitor.target_volume(1, 20, 80), 80)

        self.monitor.speaking_start(1, 5)
        self.assertEqual(self.monitor.target_volume(1, 20, 80), 20)
        self.assertEqual(self.monitor.target_volume(2, 20, 80), 80)

    def test_clear(self):
        self.monitor.speaking_start(1, 5)
        self.monitor.clear()
        self.assertEqual(self.monitor.speaking_in(1), set())


if __name__ == '__main__':
    unittest.main()
