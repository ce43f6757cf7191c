"""
Модели данных для музыкального плеера.
"""

from dataclasses import dataclass
from typing import Optional
from enum import Enum


class MediaSource(Enum):
    """Источник трека"""
    YOUTUBE = "youtube"
    HLS = "hls"


class PlayerStatus(Enum):
    """Состояние плеера"""
    PLAYING = "playing"
    PAUSED = "paused"
    IDLE = "idle"


@dataclass(frozen=True)
class QueuedPlaylist:
    """Плейлист, из которого был добавлен трек"""
    title: str
    source: str


@dataclass(frozen=True)
class Song:
    """Модель трека"""
    title: str
    artist: str
    url: str  # канонический адрес источника, по нему считается ключ кэша
    length: int  # в секундах
    offset: int = 0  # начало воспроизведения внутри источника
    playlist: Optional[QueuedPlaylist] = None
    is_live: bool = False
    thumbnail: Optional[str] = None
    source: MediaSource = MediaSource.YOUTUBE

    @property
    def duration_formatted(self) -> str:
        """Возвращает длительность в формате MM:SS или HH:MM:SS"""
        if self.is_live:
            return "LIVE"
        return format_seconds(self.length)

    @property
    def display_name(self) -> str:
        """Возвращает отображаемое имя трека"""
        if self.artist:
            return f"{self.artist} - {self.title}"
        return self.title


@dataclass(frozen=True)
class QueuedSong:
    """Элемент очереди воспроизведения"""
    song: Song
    added_in_channel_id: int
    requested_by: int


def format_seconds(seconds: int) -> str:
    hours, remainder = divmod(int(seconds), 3600)
    minutes, seconds = divmod(remainder, 60)

    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"
