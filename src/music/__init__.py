"""
Музыкальный модуль для Discord бота.
Содержит плеер серверов, очередь и получение аудиопотоков из YouTube.
"""

from .models import MediaSource, PlayerStatus, QueuedPlaylist, QueuedSong, Song, format_seconds
from .errors import MusicError, ResolutionError, ResourceError, UserActionError
from .queue import SongQueue
from .cache import FileCache
from .transcoder import AudioTranscoder
from .youtube import YouTubeExtractor
from .resolver import StreamResolver
from .speech import SpeechActivityMonitor
from .voice import VoiceConnectionAdapter
from .player import GuildPlayer
from .registry import PlayerRegistry

__all__ = [
    'MediaSource',
    'PlayerStatus',
    'QueuedPlaylist',
    'QueuedSong',
    'Song',
    'format_seconds',
    'MusicError',
    'ResolutionError',
    'ResourceError',
    'UserActionError',
    'SongQueue',
    'FileCache',
    'AudioTranscoder',
    'YouTubeExtractor',
    'StreamResolver',
    'SpeechActivityMonitor',
    'VoiceConnectionAdapter',
    'GuildPlayer',
    'PlayerRegistry'
]
