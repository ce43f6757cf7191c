"""
Исключения музыкального плеера.

UserActionError - ошибки пользователя, сообщаются в чат и не ломают плеер.
ResolutionError - не удалось получить поток для трека, трек пропускается.
ResourceError - сбой кэша, логируется и не выходит за пределы плеера.
"""


class MusicError(Exception):
    """Базовое исключение музыкального модуля"""


class UserActionError(MusicError):
    """Недопустимое действие пользователя"""


class NoPreviousSong(UserActionError):
    def __init__(self):
        super().__init__("Нет предыдущего трека")


class QueueEnded(UserActionError):
    def __init__(self):
        super().__init__("Очередь закончилась")


class InvalidMoveRange(UserActionError):
    def __init__(self):
        super().__init__("Позиция для перемещения вне очереди")


class InvalidQueueIndex(UserActionError):
    def __init__(self):
        super().__init__("Позиция для удаления вне очереди")


class NotConnected(UserActionError):
    def __init__(self):
        super().__init__("Бот не подключен к голосовому каналу")


class NotPlaying(UserActionError):
    def __init__(self):
        super().__init__("Сейчас ничего не воспроизводится")


class NotPaused(UserActionError):
    def __init__(self):
        super().__init__("Воспроизведение не на паузе")


class LiveSeek(UserActionError):
    def __init__(self):
        super().__init__("Нельзя перематывать прямую трансляцию")


class SeekOutOfRange(UserActionError):
    def __init__(self):
        super().__init__("Позиция перемотки за пределами трека")


class ResolutionError(MusicError):
    """Не удалось получить аудиопоток для трека"""


class NoSuitableFormat(ResolutionError):
    def __init__(self, url: str = ""):
        super().__init__(f"Не найден подходящий формат: {url}")


class StreamError(ResolutionError):
    """Ошибка запуска или работы ffmpeg"""


class ResourceError(MusicError):
    """Ошибка ресурса (кэш, файловая система)"""


class CacheWriteError(ResourceError):
    """Ошибка записи в кэш"""
