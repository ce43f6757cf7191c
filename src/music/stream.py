"""
Аудиопоток от ffmpeg с раздачей в воспроизведение и в кэш.
"""

import asyncio
import logging
import queue
import subprocess
import tempfile
import threading
from typing import Callable, Optional

import discord
from discord.oggparse import OggError, OggStream

from .cache import CacheWriteStream
from .errors import CacheWriteError, StreamError

logger = logging.getLogger(__name__)

OPUS_HEADER_PACKETS = (b'OpusHead', b'OpusTags')


class FanOutStream:
    """
    Однонаправленный поток вывода ffmpeg.

    Отдельный поток читает stdout ffmpeg и раздает данные в буфер
    воспроизведения и, если нужно, в очередь записи кэша. Кэш пишется своим
    потоком из неограниченной очереди и никогда не задерживает воспроизведение.

    Буфер воспроизведения в памяти ограничен MAX_BUFFER байтами. Без записи в
    кэш чтение из ffmpeg приостанавливается, пока буфер полон. При записи в
    кэш ffmpeg читается без остановок, а излишек уходит во временный файл на
    диске и подгружается в буфер по мере воспроизведения.
    """

    CHUNK_SIZE = 16 * 1024
    MAX_BUFFER = 4 * 1024 * 1024

    def __init__(
        self,
        process: subprocess.Popen,
        *,
        loop: asyncio.AbstractEventLoop,
        cache_stream: Optional[CacheWriteStream] = None,
        on_close: Optional[Callable[[], None]] = None
    ):
        self._process = process
        self._loop = loop
        self._cache_stream = cache_stream
        self._on_close = on_close

        self._buffer = bytearray()
        self._condition = threading.Condition()
        self._eof = False
        self._closed = False
        self._killed = False
        self._complete = False
        self._received = 0

        # Излишек буфера на диске: данные между _spill_read и _spill_write
        self._spill = None
        self._spill_read = 0
        self._spill_write = 0
        # Размер, которого ждет читатель: буфер может его вместить
        self._wanted = 0

        # Результат ожидания первых данных от ffmpeg
        self.started: asyncio.Future = loop.create_future()

        self._cache_failed = False
        self._cache_queue: Optional[queue.Queue] = None
        self._cache_done = threading.Event()
        self._cache_thread: Optional[threading.Thread] = None
        if cache_stream is not None:
            self._cache_queue = queue.Queue()
            self._cache_thread = threading.Thread(
                target=self._write_cache, name='audio-cache-writer', daemon=True
            )
        else:
            self._cache_done.set()

        self._pump_thread = threading.Thread(
            target=self._pump, name='audio-stream-pump', daemon=True
        )

    def start(self):
        if self._cache_thread is not None:
            self._cache_thread.start()
        self._pump_thread.start()

    @property
    def caching(self) -> bool:
        """Идет ли запись в кэш"""
        return (
            self._cache_stream is not None
            and not self._cache_done.is_set()
            and not self._cache_failed
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def killed(self) -> bool:
        return self._killed

    @property
    def buffered(self) -> int:
        """Сколько байт буфера воспроизведения держится в памяти"""
        with self._condition:
            return len(self._buffer)

    @property
    def spilled(self) -> int:
        """Сколько байт буфера воспроизведения ждет на диске"""
        with self._condition:
            return self._spill_write - self._spill_read

    def wait_cache(self, timeout: Optional[float] = None) -> bool:
        """Ждет окончания записи в кэш"""
        return self._cache_done.wait(timeout)

    def read(self, size: int = -1) -> bytes:
        """Блокирующее чтение. Возвращает меньше size байт только в конце потока."""
        with self._condition:
            if size < 0:
                chunks = []
                while not self._closed:
                    self._refill()
                    chunks.append(bytes(self._buffer))
                    self._buffer.clear()
                    self._condition.notify_all()
                    if self._eof and not self._has_spill():
                        break
                    if not self._has_spill():
                        self._condition.wait()
                return b'' if self._closed else b''.join(chunks)

            self._wanted = size
            try:
                while not self._closed:
                    if len(self._buffer) < size:
                        self._refill()
                    if len(self._buffer) >= size or (self._eof and not self._has_spill()):
                        break
                    if not self._has_spill():
                        self._condition.notify_all()
                        self._condition.wait()
            finally:
                self._wanted = 0

            if self._closed:
                return b''

            data = bytes(self._buffer[:size])
            del self._buffer[:size]
            self._condition.notify_all()
            return data

    def close(self):
        """
        Закрывает поток со стороны воспроизведения.

        ffmpeg убивается сразу, если только он не пишет в кэш: тогда процесс
        дорабатывает в фоне, а вызывающий не ждет.
        """
        with self._condition:
            if self._closed:
                return
            self._closed = True
            self._buffer.clear()
            self._drop_spill()
            self._condition.notify_all()

        if self.caching:
            logger.debug("Поток закрыт, запись в кэш продолжается в фоне")
        else:
            self._kill()

        if self._on_close is not None:
            self._on_close()

    def _kill(self):
        if self._process.poll() is None:
            try:
                self._process.kill()
            except OSError as e:
                logger.debug(f"Не удалось завершить ffmpeg: {e}")
            self._killed = True

    def _has_spill(self) -> bool:
        return self._spill_write > self._spill_read

    def _refill(self):
        """Подгружает данные с диска в буфер. Вызывается под self._condition."""
        if not self._has_spill():
            return

        room = max(self.MAX_BUFFER - len(self._buffer), self.CHUNK_SIZE)
        self._spill.seek(self._spill_read)
        data = self._spill.read(min(room, self._spill_write - self._spill_read))
        self._spill_read += len(data)
        self._buffer.extend(data)

        if not self._has_spill():
            self._spill.seek(0)
            self._spill.truncate()
            self._spill_read = self._spill_write = 0

    def _spill_chunk(self, chunk: bytes):
        """Пишет излишек на диск. Вызывается под self._condition."""
        try:
            if self._spill is None:
                self._spill = tempfile.TemporaryFile(prefix='audio-buffer-')
            self._spill.seek(self._spill_write)
            self._spill.write(chunk)
        except OSError as e:
            logger.warning(f"Не удалось записать буфер на диск: {e}")
            # Порядок данных сохраняется: дописать в память можно только за пустым диском
            if not self._has_spill():
                self._buffer.extend(chunk)
                return
            raise
        self._spill_write += len(chunk)

    def _drop_spill(self):
        if self._spill is not None:
            try:
                self._spill.close()
            except OSError as e:
                logger.debug(f"Не удалось закрыть буфер на диске: {e}")
            self._spill = None
        self._spill_read = self._spill_write = 0

    def _is_full(self, incoming: int) -> bool:
        limit = max(self.MAX_BUFFER, self._wanted + self.CHUNK_SIZE)
        return self._has_spill() or len(self._buffer) + incoming > limit

    def _append(self, chunk: bytes):
        with self._condition:
            # Без кэша ffmpeg ждет, пока воспроизведение освободит буфер
            while not self._closed and not self.caching and self._is_full(len(chunk)):
                self._condition.wait()

            if self._closed:
                return

            if self._is_full(len(chunk)):
                self._spill_chunk(chunk)
            else:
                self._buffer.extend(chunk)
            self._condition.notify_all()

    def _pump(self):
        stdout = self._process.stdout
        try:
            while True:
                chunk = stdout.read1(self.CHUNK_SIZE)
                if not chunk:
                    break

                if self._received == 0:
                    self._notify_started(None)
                self._received += len(chunk)

                self._append(chunk)

                if self._cache_queue is not None:
                    self._cache_queue.put(chunk)
        except (OSError, ValueError) as e:
            logger.debug(f"Чтение из ffmpeg прервано: {e}")
        finally:
            returncode = self._process.wait()
            self._complete = returncode == 0 and not self._killed

            if self._received == 0:
                self._notify_started(
                    StreamError(f"ffmpeg завершился без данных (код {returncode})")
                )
            elif returncode != 0 and not self._killed:
                logger.warning(f"ffmpeg завершился с кодом {returncode}, поток оборван")

            with self._condition:
                self._eof = True
                self._condition.notify_all()

            if self._cache_queue is not None:
                self._cache_queue.put(None)

    def _write_cache(self):
        try:
            while True:
                chunk = self._cache_queue.get()
                if chunk is None:
                    break
                if self._cache_failed:
                    continue
                try:
                    self._cache_stream.write(chunk)
                except CacheWriteError as e:
                    logger.warning(f"{e}. Воспроизведение продолжается без кэша")
                    self._cache_failed = True
                    self._cache_stream.abort()
                    if self._closed:
                        self._kill()

            if self._cache_failed:
                return

            if self._complete:
                try:
                    self._cache_stream.commit()
                except CacheWriteError as e:
                    logger.warning(str(e))
            else:
                self._cache_stream.abort()
        finally:
            self._cache_done.set()

    def _notify_started(self, error: Optional[Exception]):
        try:
            self._loop.call_soon_threadsafe(self._set_started, error)
        except RuntimeError:
            # Event loop уже закрыт
            pass

    def _set_started(self, error: Optional[Exception]):
        if self.started.done():
            return
        if error is None:
            self.started.set_result(None)
        else:
            self.started.set_exception(error)


class OpusStreamSource(discord.AudioSource):
    """Источник звука для discord.py: декодирует Ogg/Opus из потока в PCM"""

    def __init__(self, stream: FanOutStream):
        self._stream = stream
        self._packets = OggStream(stream).iter_packets()
        self._decoder = discord.opus.Decoder()

    def read(self) -> bytes:
        try:
            for packet in self._packets:
                if packet.startswith(OPUS_HEADER_PACKETS):
                    continue
                try:
                    return self._decoder.decode(packet, fec=False)
                except discord.opus.OpusError as e:
                    logger.debug(f"Пропущен поврежденный пакет: {e}")
        except OggError as e:
            logger.warning(f"Ошибка разбора Ogg потока: {e}")
        return b''

    def is_opus(self) -> bool:
        return False

    def cleanup(self):
        self._stream.close()
