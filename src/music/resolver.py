"""
Получение аудиопотока для трека: из кэша или из сети с записью в кэш.
"""

import asyncio
import hashlib
import logging
from typing import Any, Dict, List, Optional

from .cache import CacheWriteStream, FileCache
from .errors import CacheWriteError, StreamError
from .models import MediaSource, Song
from .stream import FanOutStream
from .transcoder import RECONNECT_OPTIONS, AudioTranscoder
from .youtube import YouTubeExtractor, choose_format, loudness_adjustment

logger = logging.getLogger(__name__)

# Трансляции и длинные видео не кэшируются
MAX_CACHE_LENGTH_SECONDS = 30 * 60


def cache_key(url: str) -> str:
    """Ключ кэша для адреса источника"""
    return hashlib.sha512(url.encode('utf-8')).hexdigest()


def is_cacheable(
    info: Dict[str, Any],
    seek: Optional[int] = None,
    to: Optional[int] = None
) -> bool:
    """Кэшируется только трек целиком: без перемотки и обрезки"""
    if seek or to:
        return False
    if info.get('is_live'):
        return False
    duration = info.get('duration')
    return duration is not None and duration < MAX_CACHE_LENGTH_SECONDS


def seek_options(seek: Optional[int] = None, to: Optional[int] = None) -> List[str]:
    options = []
    if seek:
        options.extend(['-ss', str(seek)])
    if to:
        options.extend(['-to', str(to)])
    return options


class StreamResolver:
    """Превращает трек из очереди в поток декодированного аудио"""

    def __init__(
        self,
        cache: FileCache,
        extractor: YouTubeExtractor,
        transcoder: AudioTranscoder
    ):
        self._cache = cache
        self._extractor = extractor
        self._transcoder = transcoder

    async def resolve(
        self,
        song: Song,
        seek: Optional[int] = None,
        to: Optional[int] = None
    ) -> FanOutStream:
        """
        Возвращает запущенный поток для трека.

        Args:
            song: Трек
            seek: Позиция начала в секундах
            to: Позиция окончания в секундах

        Raises:
            NoSuitableFormat: если у источника нет подходящего формата
            StreamError: если ffmpeg не запустился или не выдал данных
        """
        if song.source is MediaSource.HLS:
            return await self._open(song.url)

        key = cache_key(song.url)
        path = await self._cache.get_path_for(key)

        if path:
            logger.debug(f"Трек найден в кэше: {song.title}")
            self._cache.acquire(key)
            try:
                return await self._open(
                    path,
                    input_options=seek_options(seek, to),
                    on_close=lambda: self._cache.release(key)
                )
            except StreamError as e:
                logger.warning(f"Не удалось прочитать кэш для {song.title}: {e}")

        info = await self._extractor.get_info(song.url)
        fmt = choose_format(info)
        logger.debug(f"Выбран формат {fmt.get('format_id')} для {song.title}")

        should_cache = not song.is_live and is_cacheable(info, seek, to)
        logger.debug(f"{'Кэшируем' if should_cache else 'Не кэшируем'}: {song.title}")

        cache_stream = None
        if should_cache:
            try:
                cache_stream = self._cache.create_write_stream(key)
            except CacheWriteError as e:
                logger.warning(f"{e}. Воспроизведение без кэша")

        return await self._open(
            fmt['url'],
            input_options=RECONNECT_OPTIONS + seek_options(seek, to),
            cache_stream=cache_stream,
            volume_adjustment=loudness_adjustment(fmt)
        )

    async def _open(
        self,
        source: str,
        input_options: Optional[List[str]] = None,
        cache_stream: Optional[CacheWriteStream] = None,
        volume_adjustment: Optional[str] = None,
        on_close=None
    ) -> FanOutStream:
        loop = asyncio.get_running_loop()

        try:
            process = self._transcoder.transcode(source, input_options, volume_adjustment)
        except StreamError:
            if cache_stream is not None:
                cache_stream.abort()
            if on_close is not None:
                on_close()
            raise

        stream = FanOutStream(
            process,
            loop=loop,
            cache_stream=cache_stream,
            on_close=on_close
        )
        stream.start()

        try:
            await stream.started
        except BaseException:
            # Отмена или ошибка до первых данных: процесс не должен остаться
            stream.close()
            raise
        return stream
