import aiosqlite
import asyncio
import os
from dataclasses import dataclass, fields
from typing import Optional, List
import logging

# Настройка логирования
logger = logging.getLogger(__name__)


@dataclass
class GuildSettings:
    """Настройки музыкального плеера для сервера"""
    duck_enabled: bool = False
    duck_target: Optional[int] = None
    empty_queue_timeout: int = 30  # секунд до отключения после конца очереди, 0 - не отключаться
    auto_announce_next_song: bool = False
    default_volume: int = 100

    @property
    def effective_duck_target(self) -> Optional[int]:
        """Целевая громкость приглушения или None, если приглушение выключено"""
        return self.duck_target if self.duck_enabled else None


SETTINGS_COLUMNS = tuple(f.name for f in fields(GuildSettings))


class DatabaseManager:
    """Менеджер базы данных для Discord бота"""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = asyncio.Lock()
        self._initialized = False
        # Инициализация будет выполнена при первом подключении

    async def _init_database(self):
        """Инициализирует базу данных с нужными таблицами"""
        # Получаем абсолютный путь
        if not os.path.isabs(self.db_path):
            self.db_path = os.path.abspath(self.db_path)

        # Создаем директорию для базы данных, если её нет
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)
            logger.debug(f"Создана директория для БД: {db_dir}")

        async with aiosqlite.connect(self.db_path) as conn:
            await conn.execute('''
                CREATE TABLE IF NOT EXISTS guild_settings (
                    guild_id INTEGER PRIMARY KEY,
                    duck_enabled INTEGER,
                    duck_target INTEGER,
                    empty_queue_timeout INTEGER,
                    auto_announce_next_song INTEGER,
                    default_volume INTEGER
                )
            ''')
            await conn.commit()
        self._initialized = True
        logger.info(f"База данных инициализирована успешно: {self.db_path}")

    async def _ensure_initialized(self):
        if not self._initialized:
            await self._init_database()

    async def execute_query(self, query: str, params: tuple = ()) -> bool:
        """Выполняет SQL запрос с блокировкой"""
        async with self._lock:
            try:
                await self._ensure_initialized()
                async with aiosqlite.connect(self.db_path) as conn:
                    await conn.execute(query, params)
                    await conn.commit()
                    return True
            except (aiosqlite.Error, OSError) as e:
                logger.error(f"Ошибка выполнения запроса: {e}")
                logger.error(f"Путь к БД: {self.db_path}")
                return False

    async def fetch_one(self, query: str, params: tuple = ()) -> Optional[tuple]:
        """Получает одну запись из БД"""
        async with self._lock:
            try:
                await self._ensure_initialized()
                async with aiosqlite.connect(self.db_path) as conn:
                    async with conn.execute(query, params) as cursor:
                        return await cursor.fetchone()
            except (aiosqlite.Error, OSError) as e:
                logger.error(f"Ошибка получения записи: {e}")
                logger.error(f"Путь к БД: {self.db_path}")
                return None

    async def fetch_all(self, query: str, params: tuple = ()) -> List[tuple]:
        """Получает все записи из БД"""
        async with self._lock:
            try:
                await self._ensure_initialized()
                async with aiosqlite.connect(self.db_path) as conn:
                    async with conn.execute(query, params) as cursor:
                        return await cursor.fetchall()
            except (aiosqlite.Error, OSError) as e:
                logger.error(f"Ошибка получения записей: {e}")
                logger.error(f"Путь к БД: {self.db_path}")
                return []


class GuildSettingsDatabase:
    """Настройки серверов в БД с откатом на значения из конфигурации"""

    def __init__(self, db_manager: DatabaseManager, defaults: GuildSettings):
        self.db = db_manager
        self.defaults = defaults

    async def get(self, guild_id: int) -> GuildSettings:
        """Получает настройки сервера"""
        row = await self.db.fetch_one(
            f"SELECT {', '.join(SETTINGS_COLUMNS)} FROM `guild_settings` WHERE `guild_id` = ?",
            (guild_id,)
        )
        if not row:
            return GuildSettings(**vars(self.defaults))

        values = {}
        for name, value in zip(SETTINGS_COLUMNS, row):
            default = getattr(self.defaults, name)
            if value is None:
                values[name] = default
            elif isinstance(default, bool):
                values[name] = bool(value)
            else:
                values[name] = value
        return GuildSettings(**values)

    async def update(self, guild_id: int, **changes) -> bool:
        """Обновляет настройки сервера"""
        unknown = set(changes) - set(SETTINGS_COLUMNS)
        if unknown:
            raise ValueError(f"Неизвестные настройки: {', '.join(sorted(unknown))}")

        settings = await self.get(guild_id)
        for name, value in changes.items():
            setattr(settings, name, value)

        params = tuple(getattr(settings, name) for name in SETTINGS_COLUMNS)
        return await self.db.execute_query(
            f"INSERT OR REPLACE INTO `guild_settings` (guild_id, {', '.join(SETTINGS_COLUMNS)}) "
            f"VALUES (?{', ?' * len(SETTINGS_COLUMNS)})",
            (guild_id,) + params
        )
