from abc import ABC, abstractmethod
import discord
from discord.ext import commands


class BaseCommand(ABC):
    """Базовый класс для всех команд бота"""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @abstractmethod
    async def execute(self, interaction: discord.Interaction, **kwargs) -> None:
        """Выполняет команду"""
        pass
