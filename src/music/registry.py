"""
Реестр плееров: один GuildPlayer на сервер.
"""

import logging
import threading
from typing import Dict, List, Optional

from .player import AnnounceCallback, ErrorCallback, GuildPlayer
from .resolver import StreamResolver
from .voice import VoiceConnectionAdapter

logger = logging.getLogger(__name__)


class PlayerRegistry:
    """Создает плееры по требованию и раздает им общие зависимости"""

    def __init__(
        self,
        resolver: StreamResolver,
        adapter: VoiceConnectionAdapter,
        settings,
        default_volume: int = 100
    ):
        """
        Инициализация реестра.

        Args:
            resolver: Получение аудиопотоков
            adapter: Подключение к голосовым каналам
            settings: Источник настроек сервера (метод get(guild_id))
            default_volume: Громкость по умолчанию из конфигурации
        """
        self._resolver = resolver
        self._adapter = adapter
        self._settings = settings
        self._default_volume = default_volume

        self._players: Dict[int, GuildPlayer] = {}
        self._lock = threading.Lock()

        # Callbacks
        self._on_announce: Optional[AnnounceCallback] = None
        self._on_error: Optional[ErrorCallback] = None

    def get(self, guild_id: int) -> GuildPlayer:
        """Получает плеер сервера, создавая его при первом обращении"""
        with self._lock:
            player = self._players.get(guild_id)
            if player is None:
                player = GuildPlayer(
                    guild_id,
                    self._resolver,
                    self._adapter,
                    self._settings,
                    default_volume=self._default_volume
                )
                player.set_on_announce(self._on_announce)
                player.set_on_error(self._on_error)
                self._players[guild_id] = player
                logger.debug(f"Создан плеер для сервера {guild_id}")
            return player

    def find(self, guild_id: int) -> Optional[GuildPlayer]:
        """Возвращает плеер сервера без создания"""
        with self._lock:
            return self._players.get(guild_id)

    def players(self) -> List[GuildPlayer]:
        with self._lock:
            return list(self._players.values())

    def set_on_announce(self, callback: Optional[AnnounceCallback]):
        """Устанавливает callback объявления следующего трека для всех плееров"""
        self._on_announce = callback
        for player in self.players():
            player.set_on_announce(callback)

    def set_on_error(self, callback: Optional[ErrorCallback]):
        """Устанавливает callback при ошибке трека для всех плееров"""
        self._on_error = callback
        for player in self.players():
            player.set_on_error(callback)

    async def stop_all(self):
        """Останавливает все плееры при выключении бота"""
        for player in self.players():
            try:
                await player.shutdown()
            except Exception as e:
                logger.error(f"Ошибка остановки плеера {player.guild_id}: {e}")
        with self._lock:
            self._players.clear()
