"""
Музыкальный плеер сервера.

Плеер хранит очередь и состояние воспроизведения одного сервера. Все
изменения состояния выполняются под одной блокировкой плеера, а события от
Discord (конец трека, речь участников, состояние подключения) проходят через
очередь событий и обрабатываются по одному под той же блокировкой.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Tuple

import discord

from ..database import GuildSettings
from .errors import (
    LiveSeek,
    NoPreviousSong,
    NotConnected,
    NotPaused,
    NotPlaying,
    QueueEnded,
    ResolutionError,
    SeekOutOfRange,
    StreamError,
)
from .models import PlayerStatus, QueuedSong, Song
from .queue import SongQueue
from .resolver import StreamResolver
from .speech import SpeechActivityMonitor
from .voice import ConnectionState, SpeakingListener, VoiceConnectionAdapter, VoiceSession

logger = logging.getLogger(__name__)

DEFAULT_VOLUME = 100

AnnounceCallback = Callable[['GuildPlayer'], Awaitable[None]]
ErrorCallback = Callable[['GuildPlayer', QueuedSong, Exception], Awaitable[None]]


class EventType(Enum):
    SINK_IDLE = "sink_idle"
    SPEAKING_START = "speaking_start"
    SPEAKING_END = "speaking_end"
    CONNECTION_STATE = "connection_state"


@dataclass
class PlayerEvent:
    """Событие для очереди событий плеера"""
    type: EventType
    generation: int = 0
    member_id: Optional[int] = None
    state: Optional[ConnectionState] = None
    session: Optional[VoiceSession] = None


class GuildPlayer:
    """Плеер одного сервера"""

    def __init__(
        self,
        guild_id: int,
        resolver: StreamResolver,
        adapter: VoiceConnectionAdapter,
        settings,
        default_volume: int = DEFAULT_VOLUME
    ):
        """
        Инициализация плеера.

        Args:
            guild_id: ID сервера
            resolver: Получение аудиопотоков
            adapter: Подключение к голосовым каналам
            settings: Источник настроек сервера (метод get(guild_id))
            default_volume: Громкость до загрузки настроек сервера
        """
        self.guild_id = guild_id
        self._resolver = resolver
        self._adapter = adapter
        self._settings = settings

        self._queue = SongQueue()
        self._status = PlayerStatus.IDLE
        self._loop_song = False
        self._loop_queue = False
        self._volume: Optional[int] = None
        self._default_volume = default_volume
        self._duck_target: Optional[int] = None
        self._empty_queue_timeout = 0
        self._position = 0
        self._now_playing: Optional[QueuedSong] = None

        self._session: Optional[VoiceSession] = None
        self._source: Optional[discord.PCMVolumeTransformer] = None
        # Номер текущего источника: события конца старых источников игнорируются
        self._generation = 0
        self._speech = SpeechActivityMonitor()

        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._events: Optional[asyncio.Queue] = None
        self._dispatcher: Optional[asyncio.Task] = None
        self._tick_task: Optional[asyncio.Task] = None
        self._resolve_task: Optional[asyncio.Task] = None
        self._disconnect_timer: Optional[asyncio.Task] = None

        self._on_announce: Optional[AnnounceCallback] = None
        self._on_error: Optional[ErrorCallback] = None

    # ==================== СОСТОЯНИЕ ====================

    @property
    def status(self) -> PlayerStatus:
        return self._status

    @property
    def position(self) -> int:
        """Позиция воспроизведения в секундах"""
        return self._position

    @property
    def now_playing(self) -> Optional[QueuedSong]:
        return self._now_playing

    @property
    def voice_channel(self) -> Optional[discord.VoiceChannel]:
        return self._session.channel if self._session else None

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    @property
    def loop_song(self) -> bool:
        return self._loop_song

    @loop_song.setter
    def loop_song(self, value: bool):
        self._loop_song = value
        if value:
            self._loop_queue = False

    @property
    def loop_queue(self) -> bool:
        return self._loop_queue

    @loop_queue.setter
    def loop_queue(self, value: bool):
        self._loop_queue = value
        if value:
            self._loop_song = False

    def get_current(self) -> Optional[QueuedSong]:
        return self._queue.current

    def get_queue(self) -> List[QueuedSong]:
        """Возвращает очередь без текущего трека"""
        return self._queue.upcoming()

    def get_page(self, page: int = 1, per_page: int = 10) -> Tuple[List[QueuedSong], int, int]:
        return self._queue.get_page(page, per_page)

    def queue_size(self) -> int:
        return self._queue.size

    def is_queue_empty(self) -> bool:
        return self._queue.is_empty

    def total_duration_formatted(self) -> str:
        return self._queue.total_duration_formatted

    def can_go_forward(self, skip: int) -> bool:
        return self._queue.can_go_forward(skip)

    def can_go_back(self) -> bool:
        return self._queue.can_go_back()

    def get_volume(self) -> int:
        # Явно выставленная громкость переживает переподключение
        return self._volume if self._volume is not None else self._default_volume

    def set_on_announce(self, callback: Optional[AnnounceCallback]):
        """Устанавливает callback объявления следующего трека"""
        self._on_announce = callback

    def set_on_error(self, callback: Optional[ErrorCallback]):
        """Устанавливает callback при ошибке воспроизведения трека"""
        self._on_error = callback

    # ==================== ПОДКЛЮЧЕНИЕ ====================

    async def connect(self, channel: discord.VoiceChannel):
        """
        Подключается к голосовому каналу.

        При переподключении наблюдатель старого подключения снимается
        до того, как запускается новый.
        """
        self._loop = asyncio.get_running_loop()
        settings = await self._settings.get(self.guild_id)
        vc = await self._adapter.join(channel)

        async with self._lock:
            self._apply_settings(settings)

            previous = self._session
            if previous is not None and previous.watcher is not None:
                previous.watcher.cancel()

            session = VoiceSession(channel=channel, voice_client=vc)
            session.watcher = asyncio.create_task(
                self._adapter.watch(vc, lambda state: self._post(PlayerEvent(
                    EventType.CONNECTION_STATE, state=state, session=session
                )))
            )
            self._session = session

    async def disconnect(self):
        """Отключается от канала, очередь и режимы повтора сохраняются"""
        async with self._lock:
            await self._disconnect_locked()

    async def reload_settings(self):
        """Перечитывает настройки сервера без переподключения"""
        settings = await self._settings.get(self.guild_id)
        async with self._lock:
            session = self._session
            was_ducked = (
                session is not None
                and self._duck_target is not None
                and self._speech.is_anyone_speaking(session.channel.id)
            )
            self._apply_settings(settings)

            if session is None:
                return
            if self._duck_target is not None and self._speech.is_anyone_speaking(session.channel.id):
                self.set_volume(self._duck_target)
            elif was_ducked:
                self.set_volume(self._default_volume)

    def _apply_settings(self, settings: GuildSettings):
        self._default_volume = settings.default_volume
        self._duck_target = settings.effective_duck_target
        self._empty_queue_timeout = settings.empty_queue_timeout

    async def _disconnect_locked(self):
        session = self._session
        if session is None:
            return

        if self._status is PlayerStatus.PLAYING:
            self._pause_locked()

        if session.watcher is not None and session.watcher is not asyncio.current_task():
            session.watcher.cancel()

        self._stop_sink()
        self._session = None
        self._speech.clear()
        self._cancel_disconnect_timer()

        try:
            await session.voice_client.disconnect(force=True)
        except Exception as e:
            logger.error(f"Ошибка отключения: {e}")

        logger.info(f"Отключен от сервера {self.guild_id}")

    def _register_speech_listener(self, session: VoiceSession):
        if session.listening:
            return

        def forward(event_type: EventType):
            def callback(member_id: int):
                self._post_threadsafe(PlayerEvent(event_type, member_id=member_id, session=session))
            return callback

        listener = SpeakingListener(
            forward(EventType.SPEAKING_START),
            forward(EventType.SPEAKING_END)
        )
        session.listening = self._adapter.listen(session.voice_client, listener)

    # ==================== ОЧЕРЕДЬ ====================

    async def add(self, song: QueuedSong, immediate: bool = False):
        """
        Добавляет трек в очередь.

        Args:
            song: Трек
            immediate: Поставить следующим (не действует для треков из плейлиста)
        """
        async with self._lock:
            self._queue.add(song, immediate=immediate)

    async def shuffle(self):
        async with self._lock:
            self._queue.shuffle()

    async def clear(self):
        async with self._lock:
            self._queue.clear()

    async def remove_from_queue(self, index: int, amount: int = 1) -> List[QueuedSong]:
        async with self._lock:
            return self._queue.remove(index, amount)

    async def remove_current(self) -> Optional[QueuedSong]:
        """
        Удаляет текущий трек, следующий становится текущим.

        Если удаленный трек звучал, он останавливается: при воспроизведении
        запускается следующий трек, на паузе плеер остается на паузе и
        продолжит уже со следующего трека.
        """
        self._cancel_resolve()
        async with self._lock:
            removed = self._queue.remove_current()
            if removed is None or removed is not self._now_playing:
                return removed

            self._stop_sink()
            self._stop_tracking()
            self._position = 0
            self._now_playing = None

            if self._status is PlayerStatus.PLAYING:
                await self._play_available_locked()
            elif self._queue.current is None:
                self._set_idle()
            return removed

    async def move(self, from_index: int, to_index: int) -> QueuedSong:
        async with self._lock:
            return self._queue.move(from_index, to_index)

    # ==================== ВОСПРОИЗВЕДЕНИЕ ====================

    async def play(self, seek: Optional[int] = None, to: Optional[int] = None):
        """
        Воспроизводит текущий трек.

        Args:
            seek: Позиция начала в секундах от начала трека
            to: Позиция конца в секундах от начала трека

        Raises:
            NotConnected, QueueEnded, NoSuitableFormat, StreamError
        """
        async with self._lock:
            await self._play_locked(seek, to)

    async def seek(self, seconds: int):
        """Перематывает текущий трек"""
        self._cancel_resolve()
        async with self._lock:
            await self._seek_locked(seconds)

    async def forward_seek(self, seconds: int):
        """Перематывает текущий трек вперед относительно текущей позиции"""
        self._cancel_resolve()
        async with self._lock:
            await self._seek_locked(self._position + seconds)

    async def manual_forward(self, skip: int) -> bool:
        """
        Сдвигает курсор без запуска воспроизведения.

        Returns:
            False, если очередь закончилась. Состояние при этом не меняется.
        """
        async with self._lock:
            return self._manual_forward(skip)

    async def play_available(self) -> bool:
        """
        Воспроизводит текущий трек, пропуская треки, которые не удалось получить.

        Ошибки пропущенных треков передаются в callback ошибок.

        Returns:
            False, если играть больше нечего

        Raises:
            NotConnected
        """
        async with self._lock:
            if self._session is None:
                raise NotConnected()
            return await self._play_available_locked()

    def _manual_forward(self, skip: int) -> bool:
        if not self._queue.forward(skip):
            return False
        self._position = 0
        self._stop_tracking()
        return True

    async def forward(self, skip: int = 1):
        """
        Переходит на skip треков вперед.

        Raises:
            QueueEnded: если впереди нет столько треков
        """
        if not self.can_go_forward(skip):
            raise QueueEnded()

        self._cancel_resolve()
        async with self._lock:
            if not self._manual_forward(skip):
                raise QueueEnded()

            if self._queue.current is not None and self._status is not PlayerStatus.PAUSED:
                if self._session is not None:
                    await self._play_locked()
                    return
            self._stop_sink()
            self._set_idle()

    async def back(self):
        """
        Возвращается к предыдущему треку.

        Raises:
            NoPreviousSong: если текущий трек первый
        """
        if not self.can_go_back():
            raise NoPreviousSong()

        self._cancel_resolve()
        async with self._lock:
            self._queue.back()
            self._position = 0
            self._stop_tracking()

            if self._status is not PlayerStatus.PAUSED and self._session is not None:
                await self._play_locked()

    async def pause(self):
        async with self._lock:
            if self._status is not PlayerStatus.PLAYING:
                raise NotPlaying()
            self._pause_locked()

    async def resume(self):
        """Возобновляет воспроизведение с сохраненной позиции"""
        async with self._lock:
            if self._status is not PlayerStatus.PAUSED:
                raise NotPaused()

            if self._can_unpause():
                await self._play_locked()
            else:
                # После переподключения источника нет, трек запускается заново
                await self._play_locked(seek=self._position or None)

    def set_volume(self, level: int):
        """Устанавливает громкость (0-100)"""
        level = max(0, min(100, level))
        self._volume = level
        if self._source is not None:
            self._source.volume = level / 100

    async def stop(self):
        """
        Останавливает воспроизведение, отключается и очищает очередь.

        Режимы повтора не сбрасываются.
        """
        self._cancel_resolve()
        async with self._lock:
            await self._disconnect_locked()
            self._queue.reset()
            self._set_idle(start_timer=False)

    async def shutdown(self):
        """Останавливает плеер и фоновые задачи"""
        await self.stop()
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            self._dispatcher = None

    async def drain_events(self):
        """Ждет обработки всех поставленных событий"""
        if self._events is not None:
            await self._events.join()

    def _can_unpause(self) -> bool:
        session = self._session
        return (
            session is not None
            and self._now_playing is not None
            and self._now_playing is self._queue.current
            and session.voice_client.is_paused()
        )

    def _pause_locked(self):
        self._status = PlayerStatus.PAUSED
        if self._session is not None:
            self._session.voice_client.pause()
        self._stop_tracking()

    async def _seek_locked(self, seconds: int):
        if self._session is None:
            raise NotConnected()

        current = self._queue.current
        if current is None:
            raise QueueEnded()
        if current.song.is_live:
            raise LiveSeek()
        if seconds < 0 or seconds > current.song.length:
            raise SeekOutOfRange()

        await self._play_locked(seek=seconds)

    async def _play_locked(self, seek: Optional[int] = None, to: Optional[int] = None) -> bool:
        """
        Запускает текущий трек. Должен вызываться под блокировкой.

        Returns:
            False, если получение потока было отменено
        """
        session = self._session
        if session is None:
            raise NotConnected()

        current = self._queue.current
        if current is None:
            raise QueueEnded()

        if self._status is PlayerStatus.PAUSED and seek is None and self._can_unpause():
            session.voice_client.resume()
            self._status = PlayerStatus.PLAYING
            self._start_tracking()
            return True

        self._cancel_disconnect_timer()
        self._stop_sink()
        self._stop_tracking()

        song = current.song
        start = seek if seek is not None else 0
        stream = await self._resolve(song, start, to)
        if stream is None:
            self._set_idle(start_timer=False)
            return False

        source = self._adapter.create_sink(stream, self.get_volume())
        generation = self._generation
        try:
            session.voice_client.play(source, after=self._make_after(generation))
        except discord.ClientException as e:
            source.cleanup()
            self._set_idle(start_timer=False)
            raise StreamError(f"Не удалось начать воспроизведение: {e}") from e

        self._source = source
        self._now_playing = current
        self._status = PlayerStatus.PLAYING
        self._start_tracking(start)

        logger.info(f"Воспроизведение: {song.display_name} (сервер {self.guild_id})")
        return True

    async def _resolve(self, song: Song, start: int, to: Optional[int]):
        """Получает поток в отдельной задаче, которую можно отменить из stop/forward"""
        real_seek = start + song.offset
        if to is not None:
            real_to = to + song.offset
        else:
            real_to = song.length + song.offset if song.offset else None

        task = asyncio.create_task(
            self._resolver.resolve(song, seek=real_seek or None, to=real_to)
        )
        self._resolve_task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._resolve_task = None

        if task.cancelled():
            logger.info(f"Получение потока отменено: {song.title}")
            return None

        try:
            return task.result()
        except ResolutionError:
            self._set_idle(start_timer=False)
            raise

    def _cancel_resolve(self):
        if self._resolve_task is not None and not self._resolve_task.done():
            self._resolve_task.cancel()

    def _stop_sink(self):
        """Останавливает текущий источник. Его событие конца будет проигнорировано."""
        self._generation += 1
        self._source = None
        session = self._session
        if session is not None:
            vc = session.voice_client
            if vc.is_playing() or vc.is_paused():
                vc.stop()

    def _set_idle(self, start_timer: bool = True):
        self._status = PlayerStatus.IDLE
        self._now_playing = None
        self._position = 0
        self._stop_tracking()
        if start_timer:
            self._start_disconnect_timer()

    def _make_after(self, generation: int):
        def after(error: Optional[Exception]):
            if error:
                logger.error(f"Ошибка воспроизведения: {error}")
            self._post_threadsafe(PlayerEvent(EventType.SINK_IDLE, generation=generation))
        return after

    async def _advance_locked(self, skip: int) -> bool:
        """Переходит вперед и запускает трек, пропуская треки с ошибкой"""
        # Курсор не двигается только за концом очереди, тогда плеер уходит в Idle ниже
        self._manual_forward(skip)
        return await self._play_available_locked()

    async def _play_available_locked(self) -> bool:
        while self._queue.current is not None:
            try:
                return await self._play_locked()
            except ResolutionError as e:
                failed = self._queue.current
                logger.error(f"Трек пропущен: {failed.song.title}: {e}")
                await self._report_error(failed, e)
                self._queue.forward(1)

        self._stop_sink()
        self._set_idle()
        logger.debug(f"Очередь закончилась на сервере {self.guild_id}")
        return False

    async def _report_error(self, item: QueuedSong, error: Exception):
        if self._on_error is not None:
            await self._on_error(self, item, error)

    # ==================== ПОЗИЦИЯ ====================

    def _start_tracking(self, initial_position: Optional[int] = None):
        if initial_position is not None:
            self._position = initial_position
        self._stop_tracking()
        self._tick_task = asyncio.create_task(self._tick())

    def _stop_tracking(self):
        if self._tick_task is not None:
            self._tick_task.cancel()
            self._tick_task = None

    async def _tick(self):
        while True:
            await asyncio.sleep(1)
            self._position += 1

    # ==================== ТАЙМЕР ОТКЛЮЧЕНИЯ ====================

    def _start_disconnect_timer(self):
        self._cancel_disconnect_timer()
        if self._empty_queue_timeout > 0 and self._session is not None:
            self._disconnect_timer = asyncio.create_task(
                self._disconnect_later(self._empty_queue_timeout)
            )

    def _cancel_disconnect_timer(self):
        timer = self._disconnect_timer
        self._disconnect_timer = None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _disconnect_later(self, delay: int):
        await asyncio.sleep(delay)
        async with self._lock:
            if self._disconnect_timer is not asyncio.current_task():
                return
            self._disconnect_timer = None
            if self._status is PlayerStatus.IDLE:
                logger.info(f"Очередь пуста {delay} с, отключаюсь от {self.guild_id}")
                await self._disconnect_locked()

    # ==================== СОБЫТИЯ ====================

    def _post_threadsafe(self, event: PlayerEvent):
        """Ставит событие в очередь из потока discord.py"""
        if self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._post, event)
        except RuntimeError:
            # Event loop уже закрыт
            logger.debug(f"Событие {event.type.value} потеряно: event loop закрыт")

    def _post(self, event: PlayerEvent):
        if self._events is None:
            self._events = asyncio.Queue()
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.create_task(self._dispatch())
        self._events.put_nowait(event)

    async def _dispatch(self):
        while True:
            event = await self._events.get()
            try:
                async with self._lock:
                    await self._handle_event(event)
            except Exception:
                logger.exception(f"Ошибка обработки события {event.type.value} на сервере {self.guild_id}")
            finally:
                self._events.task_done()

    async def _handle_event(self, event: PlayerEvent):
        if event.type is EventType.SINK_IDLE:
            await self._on_sink_idle(event.generation)
            return

        if event.session is not self._session:
            # Событие от старого подключения
            return

        if event.type is EventType.CONNECTION_STATE:
            if event.state is ConnectionState.READY:
                self._register_speech_listener(event.session)
            elif event.state is ConnectionState.DISCONNECTED:
                logger.warning(f"Потеряно голосовое подключение на сервере {self.guild_id}")
                await self._disconnect_locked()
        elif event.type is EventType.SPEAKING_START:
            self._on_speaking(event.member_id, started=True)
        elif event.type is EventType.SPEAKING_END:
            self._on_speaking(event.member_id, started=False)

    async def _on_sink_idle(self, generation: int):
        if generation != self._generation or self._status is not PlayerStatus.PLAYING:
            return

        self._source = None
        self._stop_tracking()
        current = self._queue.current

        if self._loop_song and current is not None:
            try:
                await self._play_locked(seek=0)
                return
            except ResolutionError as e:
                logger.error(f"Не удалось повторить трек {current.song.title}: {e}")
                await self._report_error(current, e)

        if self._loop_queue and current is not None:
            self._queue.add(current)

        if await self._advance_locked(1):
            settings = await self._settings.get(self.guild_id)
            if settings.auto_announce_next_song and self._on_announce is not None:
                await self._on_announce(self)

    def _on_speaking(self, member_id: int, started: bool):
        session = self._session
        if session is None:
            return

        channel = session.channel
        if any(member.id == member_id for member in channel.members):
            if started:
                self._speech.speaking_start(channel.id, member_id)
            else:
                self._speech.speaking_end(channel.id, member_id)

        volume = self._speech.target_volume(channel.id, self._duck_target, self._default_volume)
        if volume is not None:
            self.set_volume(volume)
