"""
Система очереди треков для музыкального плеера.

Очередь хранит и историю, и будущие треки: элементы до курсора и под ним
уже сыграны или играют сейчас, элементы после курсора - впереди.
"""

import logging
import random
from typing import Optional, List, Tuple

from .errors import InvalidMoveRange, InvalidQueueIndex, NoPreviousSong
from .models import QueuedSong, format_seconds

logger = logging.getLogger(__name__)


class SongQueue:
    """Очередь воспроизведения треков с курсором"""

    def __init__(self):
        self._songs: List[QueuedSong] = []
        self._position = 0

    def __len__(self) -> int:
        return len(self._songs)

    @property
    def position(self) -> int:
        """Индекс текущего трека"""
        return self._position

    @property
    def current(self) -> Optional[QueuedSong]:
        """Текущий трек или None, если курсор за концом очереди"""
        if self._position < len(self._songs):
            return self._songs[self._position]
        return None

    @property
    def size(self) -> int:
        """Количество треков после текущего"""
        return len(self.upcoming())

    @property
    def is_empty(self) -> bool:
        """Проверяет, есть ли треки после текущего"""
        return self.size == 0

    @property
    def total_duration(self) -> int:
        """Длительность текущего и оставшихся треков в секундах"""
        total = sum(item.song.length for item in self.upcoming())
        if self.current:
            total += self.current.song.length
        return total

    @property
    def total_duration_formatted(self) -> str:
        return format_seconds(self.total_duration)

    def upcoming(self) -> List[QueuedSong]:
        """Возвращает очередь без текущего трека"""
        return self._songs[self._position + 1:]

    def get_all(self) -> List[QueuedSong]:
        """Возвращает всю очередь вместе с историей"""
        return list(self._songs)

    def add(self, item: QueuedSong, immediate: bool = False):
        """
        Добавляет трек в очередь.

        Args:
            item: Трек для добавления
            immediate: Поставить трек следующим. Треки из плейлиста
                всегда идут в конец, чтобы не ломать порядок плейлиста.
        """
        if item.song.playlist or not immediate:
            self._songs.append(item)
        else:
            self._songs.insert(self._position + 1, item)
        logger.debug(f"Трек добавлен в очередь: {item.song.display_name}")

    def shuffle(self):
        """Перемешивает треки после текущего"""
        upcoming = self.upcoming()
        random.shuffle(upcoming)
        self._songs = self._songs[:self._position + 1] + upcoming
        logger.debug("Очередь перемешана")

    def clear(self):
        """Очищает очередь, оставляя текущий трек"""
        current = self.current
        self._songs = [current] if current else []
        self._position = 0
        logger.debug("Очередь очищена")

    def reset(self):
        """Полностью очищает очередь"""
        self._songs = []
        self._position = 0

    def remove(self, index: int, amount: int = 1) -> List[QueuedSong]:
        """
        Удаляет треки из будущей части очереди.

        Args:
            index: Позиция относительно текущего трека (1 - следующий)
            amount: Количество треков

        Returns:
            Список удаленных треков

        Raises:
            InvalidQueueIndex: если диапазон выходит за пределы очереди.
                Очередь при этом не меняется.
        """
        if index < 1 or amount < 1 or index + amount - 1 > self.size:
            raise InvalidQueueIndex()

        start = self._position + index
        removed = self._songs[start:start + amount]
        del self._songs[start:start + amount]
        return removed

    def remove_current(self) -> Optional[QueuedSong]:
        """Удаляет текущий трек, следующий становится текущим"""
        current = self.current
        if current:
            del self._songs[self._position]
        return current

    def move(self, from_index: int, to_index: int) -> QueuedSong:
        """
        Перемещает трек внутри будущей части очереди.

        Args:
            from_index: Позиция трека относительно текущего
            to_index: Новая позиция относительно текущего

        Raises:
            InvalidMoveRange: если одна из позиций вне очереди
        """
        size = self.size
        if not (1 <= from_index <= size and 1 <= to_index <= size):
            raise InvalidMoveRange()

        item = self._songs.pop(self._position + from_index)
        self._songs.insert(self._position + to_index, item)
        return item

    def can_go_forward(self, skip: int) -> bool:
        return skip >= 1 and self._position + skip - 1 < len(self._songs)

    def forward(self, skip: int) -> bool:
        """Сдвигает курсор вперед. Возвращает False, если очередь закончилась."""
        if not self.can_go_forward(skip):
            return False
        self._position += skip
        return True

    def can_go_back(self) -> bool:
        return self._position - 1 >= 0

    def back(self):
        if not self.can_go_back():
            raise NoPreviousSong()
        self._position -= 1

    def get_page(self, page: int = 1, per_page: int = 10) -> Tuple[List[QueuedSong], int, int]:
        """
        Получает страницу будущих треков для отображения.

        Args:
            page: Номер страницы (1-based)
            per_page: Количество треков на страницу

        Returns:
            Кортеж (список треков, номер страницы, всего страниц)
        """
        upcoming = self.upcoming()
        total_pages = max(1, (len(upcoming) + per_page - 1) // per_page)

        page = max(1, min(page, total_pages))

        start_idx = (page - 1) * per_page
        return (upcoming[start_idx:start_idx + per_page], page, total_pages)
