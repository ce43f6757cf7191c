# Commands Package

from .music_commands import MusicCommands

__all__ = [
    'MusicCommands'
]
