"""
Файловый кэш декодированного аудио.

Файлы адресуются ключом - хэшем адреса источника. Запись идет во временный
файл в tmp/, который переименовывается в кэш только после успешного
завершения записи.
"""

import asyncio
import logging
import os
import threading
from collections import Counter
from typing import Optional

from .errors import CacheWriteError

logger = logging.getLogger(__name__)


class CacheWriteStream:
    """Поток записи одного элемента кэша"""

    def __init__(self, cache: 'FileCache', key: str):
        self._cache = cache
        self.key = key
        self.tmp_path = os.path.join(cache.tmp_dir, key)
        self.final_path = os.path.join(cache.cache_dir, key)
        self._file = open(self.tmp_path, 'wb')
        self._bytes_written = 0

    def write(self, data: bytes):
        try:
            self._file.write(data)
        except OSError as e:
            raise CacheWriteError(f"Ошибка записи в кэш {self.key}: {e}") from e
        self._bytes_written += len(data)

    def commit(self):
        """Закрывает файл и переносит его в кэш"""
        try:
            self._file.close()
            os.replace(self.tmp_path, self.final_path)
            logger.debug(f"Записано в кэш: {self.key} ({self._bytes_written} байт)")
        except OSError as e:
            self._remove_tmp()
            raise CacheWriteError(f"Не удалось сохранить {self.key} в кэш: {e}") from e
        finally:
            self._cache._release_writer(self.key)

    def abort(self):
        """Закрывает файл и удаляет недописанные данные"""
        try:
            self._file.close()
        except OSError:
            logger.debug(f"Не удалось закрыть файл кэша {self.tmp_path}")
        self._remove_tmp()
        self._cache._release_writer(self.key)
        logger.debug(f"Запись в кэш отменена: {self.key}")

    def _remove_tmp(self):
        try:
            os.remove(self.tmp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Не удалось удалить временный файл {self.tmp_path}: {e}")


class FileCache:
    """Кэш аудиофайлов на диске"""

    def __init__(self, cache_dir: str, limit_bytes: int = 2 * 1024 ** 3):
        """
        Инициализация кэша.

        Args:
            cache_dir: Директория кэша
            limit_bytes: Максимальный размер кэша в байтах
        """
        self.cache_dir = os.path.abspath(cache_dir)
        self.tmp_dir = os.path.join(self.cache_dir, 'tmp')
        self.limit_bytes = limit_bytes

        self._lock = threading.Lock()
        self._writers: set = set()
        self._readers: Counter = Counter()

        os.makedirs(self.tmp_dir, exist_ok=True)

    async def get_path_for(self, key: str) -> Optional[str]:
        """
        Возвращает путь к закэшированному файлу.

        Args:
            key: Ключ кэша

        Returns:
            Путь к файлу или None, если файла нет
        """
        path = os.path.join(self.cache_dir, key)
        with self._lock:
            if key in self._writers:
                return None

        if not os.path.isfile(path):
            return None

        try:
            # Время доступа нужно для вытеснения старых файлов
            os.utime(path)
        except OSError:
            return None
        return path

    def create_write_stream(self, key: str) -> CacheWriteStream:
        """
        Создает поток записи в кэш.

        Raises:
            CacheWriteError: если запись для этого ключа уже идет или файл
                не удалось открыть
        """
        with self._lock:
            if key in self._writers:
                raise CacheWriteError(f"Запись в кэш уже идет: {key}")
            self._writers.add(key)

        try:
            return CacheWriteStream(self, key)
        except OSError as e:
            self._release_writer(key)
            raise CacheWriteError(f"Не удалось открыть файл кэша {key}: {e}") from e

    def acquire(self, key: str):
        """Отмечает, что файл читается и его нельзя удалять"""
        with self._lock:
            self._readers[key] += 1

    def release(self, key: str):
        with self._lock:
            self._readers[key] -= 1
            if self._readers[key] <= 0:
                del self._readers[key]

    def is_in_use(self, key: str) -> bool:
        with self._lock:
            return key in self._writers or key in self._readers

    def _release_writer(self, key: str):
        with self._lock:
            self._writers.discard(key)

    async def cleanup(self):
        """Удаляет временные файлы и старые файлы сверх лимита"""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._cleanup_sync)

    def _cleanup_sync(self):
        removed_tmp = 0
        for name in os.listdir(self.tmp_dir):
            if self.is_in_use(name):
                continue
            try:
                os.remove(os.path.join(self.tmp_dir, name))
                removed_tmp += 1
            except OSError as e:
                logger.warning(f"Не удалось удалить временный файл {name}: {e}")

        entries = []
        total_size = 0
        for entry in os.scandir(self.cache_dir):
            if not entry.is_file():
                continue
            stat = entry.stat()
            entries.append((stat.st_mtime, stat.st_size, entry.name))
            total_size += stat.st_size

        evicted = 0
        # Сначала самые давно использованные
        for _, size, name in sorted(entries):
            if total_size <= self.limit_bytes:
                break
            if self.is_in_use(name):
                continue
            try:
                os.remove(os.path.join(self.cache_dir, name))
            except OSError as e:
                logger.warning(f"Не удалось удалить файл кэша {name}: {e}")
                continue
            total_size -= size
            evicted += 1

        logger.info(
            f"Очистка кэша: удалено временных файлов {removed_tmp}, "
            f"вытеснено {evicted}, размер {total_size} байт"
        )
