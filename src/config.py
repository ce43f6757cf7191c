import os
from dotenv import load_dotenv


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Класс конфигурации для бота"""

    def __init__(self):
        load_dotenv()

        # Discord конфигурация
        self.DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
        self.GUILD_ID = int(os.getenv('GUILD_ID', 0))

        # Активность бота
        self.BOT_ACTIVITY_NAME = os.getenv('BOT_ACTIVITY_NAME', 'музыку')

        # Данные и кэш
        self.DATA_DIR = os.getenv('DATA_DIR', 'data')
        self.CACHE_DIR = os.getenv('CACHE_DIR', os.path.join(self.DATA_DIR, 'cache'))
        self.CACHE_LIMIT_MB = int(os.getenv('CACHE_LIMIT_MB', 2048))
        self.DATABASE_PATH = os.getenv('DATABASE_PATH', os.path.join(self.DATA_DIR, 'music.db'))
        self.FFMPEG_PATH = os.getenv('FFMPEG_PATH', 'ffmpeg')
        self.LOG_FILE = os.getenv('LOG_FILE', 'bot.log')

        # Настройки музыкального плеера (значения по умолчанию для серверов)
        self.MUSIC_DEFAULT_VOLUME = int(os.getenv('MUSIC_DEFAULT_VOLUME', 100))
        self.MUSIC_DUCK_ENABLED = _get_bool('MUSIC_DUCK_ENABLED', False)
        self.MUSIC_DUCK_TARGET = int(os.getenv('MUSIC_DUCK_TARGET', 20))
        self.MUSIC_EMPTY_QUEUE_TIMEOUT = int(os.getenv('MUSIC_EMPTY_QUEUE_TIMEOUT', 30))
        self.MUSIC_AUTO_ANNOUNCE = _get_bool('MUSIC_AUTO_ANNOUNCE', False)
        self.MUSIC_CHANNEL_ID = int(os.getenv('MUSIC_CHANNEL_ID', 0)) or None

    @property
    def cache_limit_bytes(self) -> int:
        return self.CACHE_LIMIT_MB * 1024 * 1024
