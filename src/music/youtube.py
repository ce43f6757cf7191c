"""
YouTube извлечение информации о треках и форматах с помощью yt-dlp.
"""

import asyncio
import logging
import re
from typing import Optional, List, Dict, Any
from concurrent.futures import ThreadPoolExecutor

import yt_dlp

from .errors import NoSuitableFormat, StreamError
from .models import Song, MediaSource, QueuedPlaylist

logger = logging.getLogger(__name__)

# Настройки yt-dlp
YTDL_FORMAT_OPTIONS = {
    'format': 'bestaudio/best',
    'noplaylist': True,
    'nocheckcertificate': True,
    'ignoreerrors': False,
    'logtostderr': False,
    'quiet': True,
    'no_warnings': True,
    'default_search': 'ytsearch',
    'source_address': '0.0.0.0',
    'extract_flat': False,
}

# itag аудиоформатов прямых трансляций, которые стабильно работают
LIVE_FORMAT_ITAGS = (128, 127, 120, 96, 95, 94, 93)


class YouTubeExtractor:
    """Класс для извлечения аудио из YouTube"""

    # Регулярные выражения для определения типа URL
    YOUTUBE_VIDEO_REGEX = re.compile(
        r'(https?://)?(www\.|music\.)?(youtube\.com/watch\?v=|youtu\.be/|youtube\.com/shorts/)[\w-]+'
    )
    YOUTUBE_PLAYLIST_REGEX = re.compile(
        r'(https?://)?(www\.|music\.)?youtube\.com/playlist\?list=[\w-]+'
    )
    HLS_REGEX = re.compile(r'^https?://\S+\.m3u8(\?\S*)?$')

    def __init__(self, max_workers: int = 3):
        self.ytdl = yt_dlp.YoutubeDL(YTDL_FORMAT_OPTIONS)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='yt-dlp')

    async def extract_track(self, url_or_query: str) -> Optional[Song]:
        """
        Извлекает информацию о треке по URL или поисковому запросу.

        Args:
            url_or_query: URL YouTube видео, HLS поток или поисковый запрос

        Returns:
            Song или None при ошибке
        """
        if self.HLS_REGEX.match(url_or_query):
            return Song(
                title=url_or_query.rsplit('/', 1)[-1],
                artist='',
                url=url_or_query,
                length=0,
                is_live=True,
                source=MediaSource.HLS
            )

        data = await self._run(self._extract_info, url_or_query)
        if not data:
            logger.warning(f"Не удалось получить информацию: {url_or_query}")
            return None

        # Если это результат поиска, берем первый результат
        if 'entries' in data:
            entries = [e for e in data['entries'] if e]
            if not entries:
                return None
            data = entries[0]

        return self._create_song_from_data(data)

    async def extract_playlist(self, url: str, max_tracks: int = 50) -> List[Song]:
        """
        Извлекает треки из плейлиста YouTube.

        Args:
            url: URL плейлиста YouTube
            max_tracks: Максимальное количество треков

        Returns:
            Список Song
        """
        playlist_opts = YTDL_FORMAT_OPTIONS.copy()
        playlist_opts['noplaylist'] = False
        playlist_opts['extract_flat'] = 'in_playlist'
        playlist_opts['playlistend'] = max_tracks
        ytdl_playlist = yt_dlp.YoutubeDL(playlist_opts)

        try:
            data = await self._run(ytdl_playlist.extract_info, url, download=False)
        except yt_dlp.utils.DownloadError as e:
            logger.error(f"Ошибка извлечения плейлиста: {e}")
            return []

        if not data or 'entries' not in data:
            logger.warning(f"Не удалось получить плейлист: {url}")
            return []

        playlist = QueuedPlaylist(title=data.get('title') or 'Плейлист', source=url)
        songs = []
        for entry in [e for e in data['entries'] if e][:max_tracks]:
            songs.append(self._create_song_from_data(entry, playlist=playlist))

        logger.info(f"Извлечено {len(songs)} треков из плейлиста")
        return songs

    async def get_info(self, url: str) -> Dict[str, Any]:
        """
        Получает полную информацию о видео вместе со списком форматов.

        Raises:
            StreamError: если yt-dlp не смог получить информацию
        """
        data = await self._run(self._extract_info, url)
        if not data:
            raise StreamError(f"Не удалось получить информацию о {url}")
        return data

    def is_youtube_url(self, url: str) -> bool:
        """Проверяет, является ли URL ссылкой на YouTube"""
        return bool(self.YOUTUBE_VIDEO_REGEX.match(url) or self.YOUTUBE_PLAYLIST_REGEX.match(url))

    def is_playlist_url(self, url: str) -> bool:
        """Проверяет, является ли URL плейлистом YouTube"""
        return bool(self.YOUTUBE_PLAYLIST_REGEX.match(url))

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: func(*args, **kwargs))

    def _extract_info(self, url: str) -> Optional[Dict[str, Any]]:
        """Синхронное извлечение информации через yt-dlp"""
        try:
            return self.ytdl.extract_info(url, download=False)
        except yt_dlp.utils.DownloadError as e:
            logger.error(f"Ошибка yt-dlp: {e}")
            return None

    def _create_song_from_data(
        self,
        data: Dict[str, Any],
        playlist: Optional[QueuedPlaylist] = None
    ) -> Song:
        """Создает Song из данных yt-dlp"""
        url = data.get('webpage_url') or data.get('url', '')
        if not url.startswith('http') and data.get('id'):
            url = f"https://www.youtube.com/watch?v={data['id']}"

        return Song(
            title=data.get('title', 'Unknown'),
            artist=data.get('uploader') or data.get('channel') or '',
            url=url,
            length=int(data.get('duration') or 0),
            offset=int(data.get('start_time') or 0),
            playlist=playlist,
            is_live=bool(data.get('is_live')),
            thumbnail=data.get('thumbnail'),
            source=MediaSource.YOUTUBE
        )

    def shutdown(self):
        """Освобождает ресурсы"""
        self._executor.shutdown(wait=False)


def _has_audio(fmt: Dict[str, Any]) -> bool:
    return fmt.get('acodec') not in (None, 'none')


def _itag(fmt: Dict[str, Any]) -> Optional[int]:
    try:
        return int(str(fmt.get('format_id', '')).split('-')[0])
    except ValueError:
        return None


def choose_format(info: Dict[str, Any]) -> Dict[str, Any]:
    """
    Выбирает формат для воспроизведения.

    Предпочтителен готовый Opus в WebM с частотой 48 кГц, тогда ffmpeg
    почти не тратит время на декодирование. Иначе для трансляций берется
    формат с наибольшим битрейтом из известного набора itag, а для обычных
    видео - аудиоформат с наибольшим средним битрейтом.

    Raises:
        NoSuitableFormat: если подходящего формата нет
    """
    formats = [f for f in info.get('formats') or [] if f.get('url')]

    for fmt in formats:
        if (
            fmt.get('acodec') == 'opus'
            and fmt.get('ext') == 'webm'
            and fmt.get('asr') is not None
            and int(fmt['asr']) == 48000
        ):
            return fmt

    if not formats:
        raise NoSuitableFormat(info.get('webpage_url', ''))

    if info.get('is_live'):
        ranked = sorted(formats, key=lambda f: f.get('abr') or 0, reverse=True)
        for fmt in ranked:
            if _itag(fmt) in LIVE_FORMAT_ITAGS:
                return fmt
        raise NoSuitableFormat(info.get('webpage_url', ''))

    ranked = sorted(
        (f for f in formats if _has_audio(f) and f.get('abr')),
        key=lambda f: f['abr'],
        reverse=True
    )
    if not ranked:
        raise NoSuitableFormat(info.get('webpage_url', ''))

    # Адаптивные форматы не имеют фиксированного общего битрейта
    for fmt in ranked:
        if not fmt.get('tbr'):
            return fmt
    return ranked[0]


def loudness_adjustment(fmt: Dict[str, Any]) -> Optional[str]:
    """Фильтр громкости, компенсирующий громкость источника"""
    loudness = fmt.get('loudness_db')
    if loudness:
        return f"{-loudness}dB"
    return None
