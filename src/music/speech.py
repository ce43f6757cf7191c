"""
Отслеживание говорящих участников для приглушения музыки.
"""

import logging
from typing import Dict, Optional, Set

logger = logging.getLogger(__name__)


class SpeechActivityMonitor:
    """Множества говорящих участников по голосовым каналам"""

    def __init__(self):
        self._speaking: Dict[int, Set[int]] = {}

    def speaking_start(self, channel_id: int, member_id: int):
        self._speaking.setdefault(channel_id, set()).add(member_id)

    def speaking_end(self, channel_id: int, member_id: int):
        self._speaking.setdefault(channel_id, set()).discard(member_id)

    def speaking_in(self, channel_id: int) -> Set[int]:
        return set(self._speaking.get(channel_id, ()))

    def is_anyone_speaking(self, channel_id: int) -> bool:
        return bool(self._speaking.get(channel_id))

    def target_volume(
        self,
        channel_id: int,
        duck_target: Optional[int],
        default_volume: int
    ) -> Optional[int]:
        """
        Громкость, которую нужно выставить после изменения состава говорящих.

        Пока кто-то говорит - целевая громкость приглушения. Когда все
        замолчали - громкость сервера по умолчанию, а не та, что была
        выставлена вручную до приглушения.

        Returns:
            Громкость или None, если приглушение не настроено
        """
        if duck_target is None:
            return None
        if self.is_anyone_speaking(channel_id):
            return duck_target
        return default_volume

    def clear(self):
        self._speaking.clear()
