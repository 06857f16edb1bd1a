"""
services/session_pointer.py

과목별 진행 중 세션 ID 포인터 (브라우저 로컬 저장소).
새로고침/재접속 후 진행 중이던 시험을 찾기 위해서만 사용한다.
"""

from typing import Any, MutableMapping, Optional

_KEY_PREFIX = "exam_session_"


def pointer_key(subject_id: str) -> str:
    return f"{_KEY_PREFIX}{subject_id}"


class LocalSessionPointer:
    def __init__(self, storage: MutableMapping[str, Any]):
        self._storage = storage

    def get(self, subject_id: str) -> Optional[str]:
        return self._storage.get(pointer_key(subject_id)) or None

    def set(self, subject_id: str, session_id: str) -> None:
        self._storage[pointer_key(subject_id)] = session_id

    def remove(self, subject_id: str) -> None:
        self._storage.pop(pointer_key(subject_id), None)
