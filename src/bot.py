import discord
from discord.ext import commands
from discord import app_commands
import logging
from typing import Optional

from src.config import Config
from src.database import DatabaseManager, GuildSettings, GuildSettingsDatabase
from src.music import (
    AudioTranscoder,
    FileCache,
    PlayerRegistry,
    StreamResolver,
    VoiceConnectionAdapter,
    YouTubeExtractor
)
from src.commands.music_commands import MusicCommands

# Настройка логирования
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(Config().LOG_FILE, encoding='utf-8')
    ]
)
logger = logging.getLogger(__name__)


class DiscordBot(commands.Bot):
    """Основной класс Discord бота"""

    def __init__(self):
        intents = discord.Intents.default()
        intents.members = True
        intents.voice_states = True
        super().__init__(command_prefix='!', intents=intents)

        # Инициализация конфигурации
        self.config = Config()

        # Инициализация базы данных
        self.db_manager = DatabaseManager(self.config.DATABASE_PATH)
        self.settings_db = GuildSettingsDatabase(
            self.db_manager,
            GuildSettings(
                duck_enabled=self.config.MUSIC_DUCK_ENABLED,
                duck_target=self.config.MUSIC_DUCK_TARGET,
                empty_queue_timeout=self.config.MUSIC_EMPTY_QUEUE_TIMEOUT,
                auto_announce_next_song=self.config.MUSIC_AUTO_ANNOUNCE,
                default_volume=self.config.MUSIC_DEFAULT_VOLUME
            )
        )

        # Инициализация музыкальных компонентов
        self.cache = FileCache(self.config.CACHE_DIR, self.config.cache_limit_bytes)
        self.youtube = YouTubeExtractor()
        self.resolver = StreamResolver(
            self.cache,
            self.youtube,
            AudioTranscoder(self.config.FFMPEG_PATH)
        )
        self.registry = PlayerRegistry(
            self.resolver,
            VoiceConnectionAdapter(),
            self.settings_db,
            default_volume=self.config.MUSIC_DEFAULT_VOLUME
        )

        # Инициализация команд
        self.music_commands = MusicCommands(self, self.registry, self.youtube, self.settings_db)

        # Регистрация событий
        self.setup_events()

        # Регистрация команд
        self.setup_commands()

        logger.info("DiscordBot инициализирован успешно")

    async def setup_hook(self):
        """Подготовка перед подключением к Discord"""
        await self.cache.cleanup()

    async def close(self):
        """Останавливает плееры перед выключением"""
        await self.registry.stop_all()
        self.youtube.shutdown()
        await super().close()

    def setup_events(self):
        """Настраивает события бота"""

        @self.event
        async def on_voice_state_update(member: discord.Member, before: discord.VoiceState, after: discord.VoiceState):
            """Обработчик изменения состояния голосового канала"""
            if not before.channel or member.bot:
                return

            # Отключаемся, если в канале бота не осталось слушателей
            player = self.registry.find(before.channel.guild.id)
            channel: Optional[discord.VoiceChannel] = player.voice_channel if player else None
            if channel and channel.id == before.channel.id:
                human_members = [m for m in before.channel.members if not m.bot]
                if len(human_members) == 0:
                    logger.info(f"В канале {channel.name} не осталось слушателей")
                    await player.disconnect()

        @self.event
        async def on_ready():
            """Событие готовности бота"""
            logger.info(f'{self.user} успешно подключился к Discord!')

            # Синхронизация команд
            try:
                await self.tree.sync(guild=discord.Object(id=self.config.GUILD_ID))
                logger.info("Серверные команды обновлены")
            except Exception as e:
                logger.error(f"Ошибка синхронизации команд: {e}")

            # Установка активности
            activity = discord.Activity(
                type=discord.ActivityType.listening,
                name=self.config.BOT_ACTIVITY_NAME
            )
            await self.change_presence(activity=activity)

    def setup_commands(self):
        """Настраивает команды бота"""
        guild = discord.Object(id=self.config.GUILD_ID)

        @self.tree.command(
            name="help",
            description="Список команд",
            guild=guild
        )
        async def help(interaction: discord.Interaction):
            """Команда для отображения справки"""
            help_text = (
                '**Музыка**\n'
                '/play - воспроизвести трек (YouTube URL, плейлист или поиск)\n'
                '/skip - пропустить трек(и)\n'
                '/back - предыдущий трек\n'
                '/pause, /resume - пауза и возобновление\n'
                '/seek, /fseek - перемотка\n'
                '/loop-song, /loop-queue - повтор трека или очереди\n'
                '/queue, /now-playing - очередь и текущий трек\n'
                '/shuffle, /clear, /remove, /move - управление очередью\n'
                '/volume - громкость\n'
                '/stop - остановить и очистить очередь\n'
                '/disconnect - отключиться, сохранив очередь\n\n'
                '**Администрирование**\n'
                '/music-config - настройки музыки на сервере'
            )
            await interaction.response.send_message(help_text, ephemeral=True)

        @self.tree.command(
            name="play",
            description="Воспроизвести трек (YouTube URL или поисковый запрос)",
            guild=guild
        )
        @app_commands.describe(
            query="URL или название трека для поиска",
            immediate="Поставить трек следующим в очереди"
        )
        async def play(interaction: discord.Interaction, query: str, immediate: bool = False):
            """Команда воспроизведения музыки"""
            await self.music_commands.play(interaction, query, immediate)

        @self.tree.command(
            name="skip",
            description="Пропустить текущий трек",
            guild=guild
        )
        @app_commands.describe(count="Сколько треков пропустить")
        async def skip(interaction: discord.Interaction, count: app_commands.Range[int, 1] = 1):
            """Команда пропуска трека"""
            await self.music_commands.skip(interaction, count)

        @self.tree.command(
            name="back",
            description="Вернуться к предыдущему треку",
            guild=guild
        )
        async def back(interaction: discord.Interaction):
            await self.music_commands.back(interaction)

        @self.tree.command(
            name="pause",
            description="Поставить воспроизведение на паузу",
            guild=guild
        )
        async def pause(interaction: discord.Interaction):
            """Команда паузы"""
            await self.music_commands.pause(interaction)

        @self.tree.command(
            name="resume",
            description="Возобновить воспроизведение",
            guild=guild
        )
        async def resume(interaction: discord.Interaction):
            await self.music_commands.resume(interaction)

        @self.tree.command(
            name="seek",
            description="Перемотать текущий трек на позицию",
            guild=guild
        )
        @app_commands.describe(seconds="Позиция в секундах")
        async def seek(interaction: discord.Interaction, seconds: app_commands.Range[int, 0]):
            await self.music_commands.seek(interaction, seconds)

        @self.tree.command(
            name="fseek",
            description="Перемотать текущий трек вперед",
            guild=guild
        )
        @app_commands.describe(seconds="На сколько секунд")
        async def fseek(interaction: discord.Interaction, seconds: app_commands.Range[int, 1]):
            await self.music_commands.seek(interaction, seconds, relative=True)

        @self.tree.command(
            name="stop",
            description="Остановить воспроизведение и очистить очередь",
            guild=guild
        )
        async def stop(interaction: discord.Interaction):
            """Команда остановки воспроизведения"""
            await self.music_commands.stop(interaction)

        @self.tree.command(
            name="disconnect",
            description="Отключиться от канала, сохранив очередь",
            guild=guild
        )
        async def disconnect(interaction: discord.Interaction):
            await self.music_commands.disconnect(interaction)

        @self.tree.command(
            name="loop-song",
            description="Переключить повтор текущего трека",
            guild=guild
        )
        async def loop_song(interaction: discord.Interaction):
            await self.music_commands.loop_song(interaction)

        @self.tree.command(
            name="loop-queue",
            description="Переключить повтор очереди",
            guild=guild
        )
        async def loop_queue(interaction: discord.Interaction):
            await self.music_commands.loop_queue(interaction)

        @self.tree.command(
            name="shuffle",
            description="Перемешать очередь",
            guild=guild
        )
        async def shuffle(interaction: discord.Interaction):
            await self.music_commands.shuffle(interaction)

        @self.tree.command(
            name="clear",
            description="Очистить очередь, оставив текущий трек",
            guild=guild
        )
        async def clear(interaction: discord.Interaction):
            """Команда очистки очереди"""
            await self.music_commands.clear(interaction)

        @self.tree.command(
            name="remove",
            description="Удалить треки из очереди",
            guild=guild
        )
        @app_commands.describe(index="Позиция в очереди", amount="Количество треков")
        async def remove(
            interaction: discord.Interaction,
            index: app_commands.Range[int, 1],
            amount: app_commands.Range[int, 1] = 1
        ):
            await self.music_commands.remove(interaction, index, amount)

        @self.tree.command(
            name="move",
            description="Переместить трек в очереди",
            guild=guild
        )
        @app_commands.describe(from_index="Текущая позиция", to_index="Новая позиция")
        async def move(
            interaction: discord.Interaction,
            from_index: app_commands.Range[int, 1],
            to_index: app_commands.Range[int, 1]
        ):
            await self.music_commands.move(interaction, from_index, to_index)

        @self.tree.command(
            name="volume",
            description="Показать или изменить громкость",
            guild=guild
        )
        @app_commands.describe(level="Громкость от 0 до 100")
        async def volume(interaction: discord.Interaction, level: Optional[app_commands.Range[int, 0, 100]] = None):
            await self.music_commands.volume(interaction, level)

        @self.tree.command(
            name="queue",
            description="Показать очередь воспроизведения",
            guild=guild
        )
        @app_commands.describe(page="Страница очереди")
        async def queue(interaction: discord.Interaction, page: app_commands.Range[int, 1] = 1):
            """Команда отображения очереди"""
            await self.music_commands.show_queue(interaction, page)

        @self.tree.command(
            name="now-playing",
            description="Показать текущий трек",
            guild=guild
        )
        async def now_playing(interaction: discord.Interaction):
            await self.music_commands.now_playing(interaction)

        @self.tree.command(
            name="music-config",
            description="Настройки музыки на сервере",
            guild=guild
        )
        @app_commands.default_permissions(manage_guild=True)
        @app_commands.describe(
            duck_enabled="Приглушать музыку, когда участники говорят",
            duck_target="Громкость при приглушении (0-100)",
            empty_queue_timeout="Секунд до отключения после конца очереди (0 - не отключаться)",
            auto_announce="Объявлять следующий трек",
            default_volume="Громкость по умолчанию (0-100)"
        )
        async def music_config(
            interaction: discord.Interaction,
            duck_enabled: Optional[bool] = None,
            duck_target: Optional[app_commands.Range[int, 0, 100]] = None,
            empty_queue_timeout: Optional[app_commands.Range[int, 0]] = None,
            auto_announce: Optional[bool] = None,
            default_volume: Optional[app_commands.Range[int, 0, 100]] = None
        ):
            await self.music_commands.configure(
                interaction,
                duck_enabled=duck_enabled,
                duck_target=duck_target,
                empty_queue_timeout=empty_queue_timeout,
                auto_announce=auto_announce,
                default_volume=default_volume
            )

    async def run_bot(self):
        """Запускает бота"""
        try:
            async with self:
                await self.start(self.config.DISCORD_TOKEN)
        except Exception as e:
            logger.error(f"Ошибка запуска бота: {e}")
            raise
