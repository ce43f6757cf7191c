"""
Музыкальные команды для Discord бота.
"""

import discord
from discord.ext import commands
import logging
from typing import List, Optional

from .base_command import BaseCommand
from ..database import GuildSettingsDatabase
from ..music import (
    GuildPlayer,
    PlayerRegistry,
    PlayerStatus,
    QueuedSong,
    ResolutionError,
    Song,
    UserActionError,
    YouTubeExtractor,
    format_seconds
)

logger = logging.getLogger(__name__)

QUEUE_PAGE_SIZE = 10


class QueuePaginationView(discord.ui.View):
    """View для пагинации очереди"""

    def __init__(self, music_commands: 'MusicCommands', guild_id: int, page: int = 1, timeout: float = 60):
        super().__init__(timeout=timeout)
        self.music_commands = music_commands
        self.guild_id = guild_id
        self.current_page = page

    @discord.ui.button(label="◀️", style=discord.ButtonStyle.secondary)
    async def prev_button(self, interaction: discord.Interaction, button: discord.ui.Button):
        if self.current_page > 1:
            self.current_page -= 1
            embed = self.music_commands._create_queue_embed(self.guild_id, self.current_page)
            await interaction.response.edit_message(embed=embed, view=self)
        else:
            await interaction.response.defer()

    @discord.ui.button(label="▶️", style=discord.ButtonStyle.secondary)
    async def next_button(self, interaction: discord.Interaction, button: discord.ui.Button):
        player = self.music_commands.registry.get(self.guild_id)
        _, _, total_pages = player.get_page(self.current_page, QUEUE_PAGE_SIZE)

        if self.current_page < total_pages:
            self.current_page += 1
            embed = self.music_commands._create_queue_embed(self.guild_id, self.current_page)
            await interaction.response.edit_message(embed=embed, view=self)
        else:
            await interaction.response.defer()


class MusicControlView(discord.ui.View):
    """View с кнопками управления воспроизведением"""

    def __init__(self, music_commands: 'MusicCommands', guild_id: int, timeout: float = None):
        super().__init__(timeout=timeout)
        self.music_commands = music_commands
        self.guild_id = guild_id

    @discord.ui.button(emoji="⏸️", style=discord.ButtonStyle.secondary)
    async def pause_resume(self, interaction: discord.Interaction, button: discord.ui.Button):
        player = self.music_commands.registry.get(self.guild_id)

        try:
            if player.status is PlayerStatus.PAUSED:
                await player.resume()
                button.emoji = "⏸️"
            else:
                await player.pause()
                button.emoji = "▶️"
        except (UserActionError, ResolutionError) as e:
            await interaction.response.send_message(f"❌ {e}", ephemeral=True)
            return

        await interaction.response.edit_message(view=self)

    @discord.ui.button(emoji="⏭️", style=discord.ButtonStyle.secondary)
    async def skip(self, interaction: discord.Interaction, button: discord.ui.Button):
        player = self.music_commands.registry.get(self.guild_id)

        await interaction.response.defer(ephemeral=True)
        try:
            await player.forward(1)
        except (UserActionError, ResolutionError) as e:
            await interaction.followup.send(f"❌ {e}", ephemeral=True)
            return

        await interaction.followup.send("⏭️ Трек пропущен", ephemeral=True)

    @discord.ui.button(emoji="⏹️", style=discord.ButtonStyle.danger)
    async def stop(self, interaction: discord.Interaction, button: discord.ui.Button):
        await self.music_commands.registry.get(self.guild_id).stop()
        await interaction.response.send_message("⏹️ Воспроизведение остановлено", ephemeral=True)
        super().stop()


class MusicCommands(BaseCommand):
    """Класс музыкальных команд"""

    def __init__(
        self,
        bot: commands.Bot,
        registry: PlayerRegistry,
        youtube: YouTubeExtractor,
        settings_db: GuildSettingsDatabase
    ):
        super().__init__(bot)

        self.registry = registry
        self.youtube = youtube
        self.settings_db = settings_db

        # Устанавливаем callbacks
        self.registry.set_on_announce(self._on_announce)
        self.registry.set_on_error(self._on_error)

    def _check_channel_permission(self, interaction: discord.Interaction) -> tuple[bool, str]:
        """
        Проверяет, может ли пользователь использовать музыкальные команды в этом канале.

        Returns:
            Кортеж (разрешено, сообщение об ошибке)
        """
        # Управляющие сервером могут использовать везде
        permissions = getattr(interaction.user, 'guild_permissions', None)
        if permissions is not None and permissions.manage_guild:
            return True, ""

        music_channel_id = self.bot.config.MUSIC_CHANNEL_ID
        if music_channel_id and interaction.channel_id != music_channel_id:
            return False, f"❌ Музыкальные команды доступны только в <#{music_channel_id}>"

        return True, ""

    async def _check(self, interaction: discord.Interaction) -> bool:
        allowed, error_msg = self._check_channel_permission(interaction)
        if not allowed:
            await interaction.response.send_message(error_msg, ephemeral=True)
        return allowed

    async def _send_error(self, interaction: discord.Interaction, error: Exception):
        """Отправляет пользователю сообщение об ошибке"""
        message = f"❌ {error}"
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)

    # ==================== CALLBACKS ====================

    def _get_text_channel(self, item: QueuedSong):
        channel_id = self.bot.config.MUSIC_CHANNEL_ID or item.added_in_channel_id
        return self.bot.get_channel(channel_id)

    async def _on_announce(self, player: GuildPlayer):
        """Callback объявления следующего трека"""
        item = player.get_current()
        if item is None:
            return

        # Меняем активность бота на текущий трек
        try:
            activity = discord.Activity(
                type=discord.ActivityType.listening,
                name=item.song.display_name[:128]  # Discord limit
            )
            await self.bot.change_presence(activity=activity)
        except Exception as e:
            logger.error(f"Ошибка смены активности: {e}")

        channel = self._get_text_channel(item)
        if not channel:
            return

        embed = self._create_now_playing_embed(player, item)
        view = MusicControlView(self, player.guild_id)

        try:
            await channel.send(embed=embed, view=view)
        except Exception as e:
            logger.error(f"Ошибка отправки уведомления: {e}")

    async def _on_error(self, player: GuildPlayer, item: QueuedSong, error: Exception):
        """Callback при ошибке воспроизведения трека"""
        channel = self._get_text_channel(item)
        if not channel:
            return

        embed = discord.Embed(
            title="❌ Ошибка воспроизведения",
            description=f"**{item.song.display_name}** пропущен: {error}",
            color=discord.Color.red()
        )

        try:
            await channel.send(embed=embed)
        except Exception as e:
            logger.error(f"Ошибка отправки уведомления: {e}")

    # ==================== EMBEDS ====================

    def _create_now_playing_embed(self, player: GuildPlayer, item: QueuedSong) -> discord.Embed:
        """Создает embed для текущего трека"""
        embed = discord.Embed(
            title="🎵 Сейчас играет" if player.status is not PlayerStatus.PAUSED else "⏸️ На паузе",
            color=discord.Color.green()
        )

        song = item.song
        if song.is_live:
            progress = "🔴 LIVE"
        else:
            progress = f"⏱️ {format_seconds(player.position)} / {song.duration_formatted}"

        embed.add_field(name=song.display_name, value=f"{progress}\n{song.url}", inline=False)

        modes = []
        if player.loop_song:
            modes.append("🔂 повтор трека")
        if player.loop_queue:
            modes.append("🔁 повтор очереди")
        modes.append(f"🔊 {player.get_volume()}%")
        embed.add_field(name="Режим", value=" | ".join(modes), inline=False)

        if song.playlist:
            embed.add_field(name="Плейлист", value=song.playlist.title, inline=False)

        if song.thumbnail:
            embed.set_thumbnail(url=song.thumbnail)

        embed.set_footer(text=f"Запросил: {self._member_name(item.requested_by)}")

        return embed

    def _create_queue_embed(self, guild_id: int, page: int = 1) -> discord.Embed:
        """Создает embed для очереди"""
        player = self.registry.get(guild_id)
        items, page, total_pages = player.get_page(page, QUEUE_PAGE_SIZE)

        embed = discord.Embed(
            title="📜 Очередь воспроизведения",
            color=discord.Color.blue()
        )

        # Текущий трек
        current = player.get_current()
        if current:
            embed.add_field(
                name="▶️ Сейчас играет",
                value=f"**{current.song.display_name}**\n"
                      f"⏱️ {current.song.duration_formatted} | "
                      f"Запросил: {self._member_name(current.requested_by)}",
                inline=False
            )
            if current.song.thumbnail:
                embed.set_thumbnail(url=current.song.thumbnail)

        # Треки в очереди
        if items:
            start = (page - 1) * QUEUE_PAGE_SIZE + 1
            queue_text = ""
            for position, item in enumerate(items, start=start):
                queue_text += f"`{position}.` {item.song.display_name} [{item.song.duration_formatted}]\n"

            embed.add_field(
                name=f"📋 Далее ({player.queue_size()} треков)",
                value=queue_text[:1024],  # Ограничение Discord
                inline=False
            )
        else:
            embed.add_field(
                name="📋 Очередь",
                value="Пусто",
                inline=False
            )

        embed.set_footer(
            text=f"Страница {page}/{total_pages} | "
                 f"Общее время: {player.total_duration_formatted()}"
        )

        return embed

    def _member_name(self, user_id: int) -> str:
        user = self.bot.get_user(user_id)
        return user.display_name if user else str(user_id)

    # ==================== КОМАНДЫ ====================

    async def _find_songs(self, query: str) -> List[Song]:
        if self.youtube.is_youtube_url(query) and self.youtube.is_playlist_url(query):
            return await self.youtube.extract_playlist(query)

        song = await self.youtube.extract_track(query)
        return [song] if song else []

    async def play(self, interaction: discord.Interaction, query: str, immediate: bool = False):
        """Команда воспроизведения"""
        if not await self._check(interaction):
            return

        # Проверяем, что пользователь в голосовом канале
        if not interaction.user.voice or not interaction.user.voice.channel:
            await interaction.response.send_message(
                "❌ Вы должны быть в голосовом канале",
                ephemeral=True
            )
            return

        await interaction.response.defer()

        target_channel = interaction.user.voice.channel
        player = self.registry.get(interaction.guild_id)

        songs = await self._find_songs(query)
        if not songs:
            await interaction.followup.send(
                "❌ Ничего не найдено по запросу",
                ephemeral=True
            )
            return

        try:
            if not player.is_connected:
                await player.connect(target_channel)
        except (discord.ClientException, TimeoutError) as e:
            logger.error(f"Ошибка подключения к голосовому каналу: {e}")
            await interaction.followup.send(
                "❌ Не удалось подключиться к голосовому каналу",
                ephemeral=True
            )
            return

        was_idle = player.status is PlayerStatus.IDLE
        for song in songs:
            await player.add(
                QueuedSong(
                    song=song,
                    added_in_channel_id=interaction.channel_id,
                    requested_by=interaction.user.id
                ),
                immediate=immediate
            )

        # Треки, которые не удалось получить, пропускаются с сообщением через _on_error
        try:
            if was_idle and not await player.play_available():
                await interaction.followup.send(
                    "❌ Не удалось воспроизвести ни один трек из очереди",
                    ephemeral=True
                )
                return
        except (UserActionError, ResolutionError) as e:
            await self._send_error(interaction, e)
            return

        if len(songs) == 1:
            song = songs[0]
            current = player.get_current()
            if was_idle and current and current.song == song:
                # Трек играет сейчас
                embed = self._create_now_playing_embed(player, current)
            else:
                # Трек добавлен в очередь
                embed = discord.Embed(
                    title="✅ Добавлено в очередь",
                    description=f"**{song.display_name}**",
                    color=discord.Color.green()
                )
                embed.add_field(name="Позиция", value="следующий" if immediate else str(player.queue_size()), inline=True)
                embed.add_field(name="Длительность", value=song.duration_formatted, inline=True)

                if song.thumbnail:
                    embed.set_thumbnail(url=song.thumbnail)
        else:
            embed = discord.Embed(
                title="✅ Добавлено в очередь",
                description=f"Добавлено **{len(songs)}** треков",
                color=discord.Color.green()
            )

            tracks_text = "\n".join(f"`{i}.` {s.display_name}" for i, s in enumerate(songs[:5], start=1))
            if len(songs) > 5:
                tracks_text += f"\n... и еще {len(songs) - 5}"

            embed.add_field(name="Треки", value=tracks_text, inline=False)

        await interaction.followup.send(embed=embed)

    async def skip(self, interaction: discord.Interaction, count: int = 1):
        """Команда пропуска трека"""
        if not await self._check(interaction):
            return

        player = self.registry.get(interaction.guild_id)
        await interaction.response.defer()

        try:
            await player.forward(count)
        except (UserActionError, ResolutionError) as e:
            await self._send_error(interaction, e)
            return

        next_item = player.get_current()
        if next_item:
            embed = discord.Embed(
                title="⏭️ Трек пропущен",
                description=f"Следующий: **{next_item.song.display_name}**",
                color=discord.Color.blue()
            )
            if next_item.song.thumbnail:
                embed.set_thumbnail(url=next_item.song.thumbnail)
        else:
            embed = discord.Embed(
                title="⏭️ Трек пропущен",
                description="Очередь пуста",
                color=discord.Color.orange()
            )

        await interaction.followup.send(embed=embed)

    async def back(self, interaction: discord.Interaction):
        """Команда возврата к предыдущему треку"""
        if not await self._check(interaction):
            return

        player = self.registry.get(interaction.guild_id)
        await interaction.response.defer()

        try:
            await player.back()
        except (UserActionError, ResolutionError) as e:
            await self._send_error(interaction, e)
            return

        current = player.get_current()
        await interaction.followup.send(f"⏮️ Предыдущий трек: **{current.song.display_name}**")

    async def pause(self, interaction: discord.Interaction):
        """Команда паузы"""
        if not await self._check(interaction):
            return

        try:
            await self.registry.get(interaction.guild_id).pause()
        except UserActionError as e:
            await self._send_error(interaction, e)
            return

        await interaction.response.send_message("⏸️ Пауза")

    async def resume(self, interaction: discord.Interaction):
        """Команда возобновления"""
        if not await self._check(interaction):
            return

        await interaction.response.defer()
        try:
            await self.registry.get(interaction.guild_id).resume()
        except (UserActionError, ResolutionError) as e:
            await self._send_error(interaction, e)
            return

        await interaction.followup.send("▶️ Воспроизведение возобновлено")

    async def seek(self, interaction: discord.Interaction, seconds: int, relative: bool = False):
        """Команда перемотки"""
        if not await self._check(interaction):
            return

        player = self.registry.get(interaction.guild_id)
        await interaction.response.defer()

        try:
            if relative:
                await player.forward_seek(seconds)
            else:
                await player.seek(seconds)
        except (UserActionError, ResolutionError) as e:
            await self._send_error(interaction, e)
            return

        await interaction.followup.send(f"⏩ Перемотано на {format_seconds(player.position)}")

    async def stop(self, interaction: discord.Interaction):
        """Команда остановки воспроизведения"""
        if not await self._check(interaction):
            return

        player = self.registry.get(interaction.guild_id)
        if not player.is_connected:
            await interaction.response.send_message(
                "❌ Бот не воспроизводит музыку",
                ephemeral=True
            )
            return

        await player.stop()

        # Возвращаем активность по умолчанию
        try:
            activity = discord.Activity(
                type=discord.ActivityType.listening,
                name=self.bot.config.BOT_ACTIVITY_NAME
            )
            await self.bot.change_presence(activity=activity)
        except Exception as e:
            logger.error(f"Ошибка смены активности: {e}")

        embed = discord.Embed(
            title="⏹️ Воспроизведение остановлено",
            description="Очередь очищена, бот отключен",
            color=discord.Color.red()
        )

        await interaction.response.send_message(embed=embed)

    async def disconnect(self, interaction: discord.Interaction):
        """Команда отключения без очистки очереди"""
        if not await self._check(interaction):
            return

        player = self.registry.get(interaction.guild_id)
        if not player.is_connected:
            await interaction.response.send_message("❌ Бот не подключен", ephemeral=True)
            return

        await player.disconnect()
        await interaction.response.send_message("👋 Отключен. Очередь сохранена, /resume продолжит воспроизведение")

    async def loop_song(self, interaction: discord.Interaction):
        """Команда повтора трека"""
        if not await self._check(interaction):
            return

        player = self.registry.get(interaction.guild_id)
        if player.status is PlayerStatus.IDLE:
            await interaction.response.send_message("❌ Сейчас ничего не играет", ephemeral=True)
            return

        player.loop_song = not player.loop_song
        await interaction.response.send_message(
            "🔂 Повтор трека включен" if player.loop_song else "➡️ Повтор трека выключен"
        )

    async def loop_queue(self, interaction: discord.Interaction):
        """Команда повтора очереди"""
        if not await self._check(interaction):
            return

        player = self.registry.get(interaction.guild_id)
        if player.status is PlayerStatus.IDLE:
            await interaction.response.send_message("❌ Сейчас ничего не играет", ephemeral=True)
            return

        if not player.loop_queue and player.queue_size() < 2:
            await interaction.response.send_message(
                "❌ Для повтора очереди в ней должно быть хотя бы 2 трека",
                ephemeral=True
            )
            return

        player.loop_queue = not player.loop_queue
        await interaction.response.send_message(
            "🔁 Повтор очереди включен" if player.loop_queue else "➡️ Повтор очереди выключен"
        )

    async def shuffle(self, interaction: discord.Interaction):
        """Команда перемешивания очереди"""
        if not await self._check(interaction):
            return

        player = self.registry.get(interaction.guild_id)
        if player.is_queue_empty():
            await interaction.response.send_message("❌ Очередь пуста", ephemeral=True)
            return

        await player.shuffle()
        await interaction.response.send_message("🔀 Очередь перемешана")

    async def clear(self, interaction: discord.Interaction):
        """Команда очистки очереди"""
        if not await self._check(interaction):
            return

        await self.registry.get(interaction.guild_id).clear()
        await interaction.response.send_message("🧹 Очередь очищена")

    async def remove(self, interaction: discord.Interaction, index: int, amount: int = 1):
        """Команда удаления треков из очереди"""
        if not await self._check(interaction):
            return

        try:
            removed = await self.registry.get(interaction.guild_id).remove_from_queue(index, amount)
        except UserActionError as e:
            await self._send_error(interaction, e)
            return

        if len(removed) == 1:
            await interaction.response.send_message(f"🗑️ Удален: **{removed[0].song.display_name}**")
        else:
            await interaction.response.send_message(f"🗑️ Удалено треков: {len(removed)}")

    async def move(self, interaction: discord.Interaction, from_index: int, to_index: int):
        """Команда перемещения трека в очереди"""
        if not await self._check(interaction):
            return

        try:
            item = await self.registry.get(interaction.guild_id).move(from_index, to_index)
        except UserActionError as e:
            await self._send_error(interaction, e)
            return

        await interaction.response.send_message(
            f"↕️ **{item.song.display_name}** перемещен на позицию {to_index}"
        )

    async def volume(self, interaction: discord.Interaction, level: Optional[int] = None):
        """Команда громкости"""
        if not await self._check(interaction):
            return

        player = self.registry.get(interaction.guild_id)
        if level is None:
            await interaction.response.send_message(f"🔊 Громкость: {player.get_volume()}%")
            return

        player.set_volume(level)
        await interaction.response.send_message(f"🔊 Громкость установлена: {player.get_volume()}%")

    async def show_queue(self, interaction: discord.Interaction, page: int = 1):
        """Команда отображения очереди"""
        if not await self._check(interaction):
            return

        player = self.registry.get(interaction.guild_id)
        if player.get_current() is None and player.is_queue_empty():
            await interaction.response.send_message(
                "❌ Очередь пуста",
                ephemeral=True
            )
            return

        embed = self._create_queue_embed(interaction.guild_id, page)
        _, page, _ = player.get_page(page, QUEUE_PAGE_SIZE)
        view = QueuePaginationView(self, interaction.guild_id, page=page)

        await interaction.response.send_message(embed=embed, view=view)

    async def now_playing(self, interaction: discord.Interaction):
        """Команда текущего трека"""
        if not await self._check(interaction):
            return

        player = self.registry.get(interaction.guild_id)
        current = player.get_current()
        if current is None or player.status is PlayerStatus.IDLE:
            await interaction.response.send_message("❌ Сейчас ничего не играет", ephemeral=True)
            return

        embed = self._create_now_playing_embed(player, current)
        await interaction.response.send_message(embed=embed, view=MusicControlView(self, interaction.guild_id))

    async def configure(
        self,
        interaction: discord.Interaction,
        duck_enabled: Optional[bool] = None,
        duck_target: Optional[int] = None,
        empty_queue_timeout: Optional[int] = None,
        auto_announce: Optional[bool] = None,
        default_volume: Optional[int] = None
    ):
        """Команда настроек музыки на сервере"""
        changes = {}
        if duck_enabled is not None:
            changes['duck_enabled'] = duck_enabled
        if duck_target is not None:
            changes['duck_target'] = max(0, min(100, duck_target))
        if empty_queue_timeout is not None:
            changes['empty_queue_timeout'] = max(0, empty_queue_timeout)
        if auto_announce is not None:
            changes['auto_announce_next_song'] = auto_announce
        if default_volume is not None:
            changes['default_volume'] = max(0, min(100, default_volume))

        if changes and not await self.settings_db.update(interaction.guild_id, **changes):
            await interaction.response.send_message("❌ Не удалось сохранить настройки", ephemeral=True)
            return

        player = self.registry.find(interaction.guild_id)
        if changes and player is not None:
            await player.reload_settings()

        settings = await self.settings_db.get(interaction.guild_id)
        embed = discord.Embed(title="⚙️ Настройки музыки", color=discord.Color.blue())
        embed.add_field(
            name="Приглушение при разговоре",
            value=f"{'вкл' if settings.duck_enabled else 'выкл'}, до {settings.duck_target}%"
            if settings.duck_target is not None else ('вкл' if settings.duck_enabled else 'выкл'),
            inline=False
        )
        embed.add_field(name="Отключение после конца очереди", value=f"{settings.empty_queue_timeout} с", inline=True)
        embed.add_field(name="Объявлять следующий трек", value='да' if settings.auto_announce_next_song else 'нет', inline=True)
        embed.add_field(name="Громкость по умолчанию", value=f"{settings.default_volume}%", inline=True)

        await interaction.response.send_message(embed=embed, ephemeral=True)

    async def execute(self, interaction: discord.Interaction, **kwargs) -> None:
        """Абстрактный метод выполнения команды"""
        pass
