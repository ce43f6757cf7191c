"""
Подключение к голосовому каналу и передача звука в Discord.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import discord
from discord.ext import voice_recv

from .stream import FanOutStream, OpusStreamSource

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Состояние голосового подключения"""
    READY = "ready"
    DISCONNECTED = "disconnected"


class SpeakingListener(voice_recv.AudioSink):
    """Приемник, который не пишет звук, а только сообщает кто говорит"""

    def __init__(
        self,
        on_start: Callable[[int], None],
        on_stop: Callable[[int], None]
    ):
        super().__init__()
        self._on_start = on_start
        self._on_stop = on_stop

    def wants_opus(self) -> bool:
        # Декодирование не нужно
        return True

    def write(self, user, data):
        pass

    def cleanup(self):
        pass

    @voice_recv.AudioSink.listener()
    def on_voice_member_speaking_start(self, member: discord.Member):
        self._on_start(member.id)

    @voice_recv.AudioSink.listener()
    def on_voice_member_speaking_stop(self, member: discord.Member):
        self._on_stop(member.id)


@dataclass
class VoiceSession:
    """Активное голосовое подключение сервера"""
    channel: discord.VoiceChannel
    voice_client: discord.VoiceClient
    watcher: Optional[asyncio.Task] = None
    listening: bool = False


class VoiceConnectionAdapter:
    """Подключение к каналам и создание источников звука"""

    def __init__(self, keepalive_interval: float = 5.0, connect_timeout: float = 10.0):
        self.keepalive_interval = keepalive_interval
        self.connect_timeout = connect_timeout

    async def join(self, channel: discord.VoiceChannel) -> discord.VoiceClient:
        """
        Подключается к голосовому каналу или переходит в него.

        Args:
            channel: Голосовой канал

        Returns:
            VoiceClient
        """
        vc = channel.guild.voice_client
        if vc is not None and vc.is_connected():
            if vc.channel.id != channel.id:
                await vc.move_to(channel)
                logger.info(f"Переход в канал {channel.name} на сервере {channel.guild.name}")
            return vc

        vc = await channel.connect(
            cls=voice_recv.VoiceRecvClient,
            self_deaf=False,
            timeout=self.connect_timeout,
            reconnect=True
        )
        logger.info(f"Подключен к каналу {channel.name} на сервере {channel.guild.name}")
        return vc

    def create_sink(self, stream: FanOutStream, volume: int) -> discord.PCMVolumeTransformer:
        """Создает источник звука с регулируемой громкостью (0-100)"""
        return discord.PCMVolumeTransformer(OpusStreamSource(stream), volume=volume / 100)

    def listen(self, vc: discord.VoiceClient, listener: SpeakingListener) -> bool:
        """Подписывается на события речи. Возвращает False, если клиент их не поддерживает."""
        if not isinstance(vc, voice_recv.VoiceRecvClient):
            logger.warning("Голосовой клиент не поддерживает прием звука")
            return False
        if vc.is_listening():
            vc.stop_listening()
        vc.listen(listener)
        return True

    async def watch(
        self,
        vc: discord.VoiceClient,
        on_state: Callable[[ConnectionState], None]
    ):
        """
        Следит за подключением, пока оно живо.

        Сообщает READY при первом успешном подключении и DISCONNECTED после
        двух проверок подряд без подключения.
        """
        ready = False
        misses = 0
        while True:
            if vc.is_connected():
                misses = 0
                if not ready:
                    ready = True
                    on_state(ConnectionState.READY)
            else:
                misses += 1
                if misses >= 2:
                    on_state(ConnectionState.DISCONNECTED)
                    return
            await asyncio.sleep(self.keepalive_interval)
