"""
Запуск ffmpeg для перекодирования источника в единый формат Ogg/Opus.
"""

import logging
import subprocess
import sys
from typing import List, Optional

from .errors import StreamError

logger = logging.getLogger(__name__)

# Переподключение имеет смысл только при чтении из сети
RECONNECT_OPTIONS = [
    '-reconnect', '1',
    '-reconnect_streamed', '1',
    '-reconnect_delay_max', '5',
]

OUTPUT_OPTIONS = [
    '-vn',
    '-c:a', 'libopus',
    '-ar', '48000',
    '-ac', '2',
    '-b:a', '128k',
    '-f', 'ogg',
]

CREATE_NO_WINDOW = 0x08000000 if sys.platform == 'win32' else 0


class AudioTranscoder:
    """Обертка над процессом ffmpeg"""

    def __init__(self, executable: str = 'ffmpeg'):
        self.executable = executable

    def build_args(
        self,
        source: str,
        input_options: Optional[List[str]] = None,
        volume_adjustment: Optional[str] = None
    ) -> List[str]:
        """
        Формирует аргументы командной строки ffmpeg.

        Args:
            source: Путь к файлу или URL
            input_options: Опции входа (перемотка, обрезка, переподключение).
                Без опций вход читается в реальном времени (-re).
            volume_adjustment: Значение фильтра громкости, например '-3.5dB'
        """
        args = [self.executable, '-hide_banner', '-loglevel', 'error']
        args.extend(input_options if input_options else ['-re'])
        args.extend(['-i', source])
        args.extend(OUTPUT_OPTIONS)
        args.extend(['-filter:a', f"volume={volume_adjustment or '1'}"])
        args.append('pipe:1')
        return args

    def transcode(
        self,
        source: str,
        input_options: Optional[List[str]] = None,
        volume_adjustment: Optional[str] = None
    ) -> subprocess.Popen:
        """
        Запускает ffmpeg, аудио отдается в stdout.

        Raises:
            StreamError: если процесс не удалось запустить
        """
        args = self.build_args(source, input_options, volume_adjustment)
        try:
            process = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                creationflags=CREATE_NO_WINDOW
            )
        except FileNotFoundError as e:
            raise StreamError(f"ffmpeg не найден: {self.executable}") from e
        except subprocess.SubprocessError as e:
            raise StreamError(f"Не удалось запустить ffmpeg: {e}") from e

        logger.debug(f"Запущен ffmpeg: {' '.join(args)}")
        return process
