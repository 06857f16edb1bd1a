"""
services/identity.py

브라우저별 익명 신원 발급.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, MutableMapping

from exam_portal.errors import IdentityUnavailable

logger = logging.getLogger(__name__)

IDENTITY_KEY = "anonymous_uid"


class IdentityResolver(ABC):
    @abstractmethod
    async def resolve(self) -> str:
        """현재 브라우저의 신원 ID를 반환. 실패 시 IdentityUnavailable."""


class AnonymousIdentityResolver(IdentityResolver):
    """
    브라우저 저장소에 익명 UID를 한 번 발급해 두고 재사용한다.
    enabled=False 이면 익명 인증이 꺼진 것으로 보고 항상 실패한다.
    """

    def __init__(self, storage: MutableMapping[str, Any], enabled: bool = True):
        self._storage = storage
        self._enabled = enabled

    async def resolve(self) -> str:
        if not self._enabled:
            raise IdentityUnavailable(
                "익명 인증이 설정되지 않았습니다. 관리자에게 익명 인증 활성화를 요청하세요."
            )
        uid = self._storage.get(IDENTITY_KEY)
        if not uid:
            uid = uuid.uuid4().hex
            self._storage[IDENTITY_KEY] = uid
            logger.info(f"익명 신원 발급: {uid}")
        return uid
