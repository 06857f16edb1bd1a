"""
services/session_store.py

세션 문서 저장소.
Public API:
  - get(session_id)           -> ExamSession | None
  - put(session_id, session)  : 문서 전체 저장
  - patch(session_id, fields) : 점(.) 경로 필드 부분 갱신 (예: "answers.q1")

문서 단위 원자성만 보장한다. 트랜잭션 없음.
백엔드:
  - InMemorySessionStore : 프로세스 메모리 (기본값)
  - JsonFileSessionStore : 세션당 JSON 파일 1개
"""

import asyncio
import json
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ValidationError

from exam_portal.errors import SessionLoadFailure, SessionWriteFailure
from exam_portal.models.session_state import ExamSession

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def _to_plain(value: Any) -> Any:
    """pydantic 모델/enum을 JSON 호환 값으로 변환."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    return value


def apply_patch(document: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    """점(.) 경로로 지정된 필드를 document에 덮어쓴다. 중간 dict는 없으면 만든다."""
    for path, value in fields.items():
        parts = path.split(".")
        target = document
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        target[parts[-1]] = _to_plain(value)
    return document


def _parse(session_id: str, data: Any) -> ExamSession:
    try:
        return ExamSession.model_validate(data)
    except ValidationError as e:
        raise SessionLoadFailure(f"세션 {session_id} 문서가 손상되었습니다: {e}") from e


class SessionStore(ABC):
    @abstractmethod
    async def get(self, session_id: str) -> Optional[ExamSession]:
        """세션 조회. 없으면 None, 읽기 실패/손상은 SessionLoadFailure."""

    @abstractmethod
    async def put(self, session_id: str, session: ExamSession) -> None:
        """세션 전체 저장. 실패 시 SessionWriteFailure."""

    @abstractmethod
    async def patch(self, session_id: str, fields: Dict[str, Any]) -> None:
        """부분 갱신. 문서가 없거나 실패하면 SessionWriteFailure."""


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._documents: Dict[str, Dict[str, Any]] = {}

    async def get(self, session_id: str) -> Optional[ExamSession]:
        with self._lock:
            data = self._documents.get(session_id)
            if data is None:
                return None
            data = json.loads(json.dumps(data))
        return _parse(session_id, data)

    async def put(self, session_id: str, session: ExamSession) -> None:
        with self._lock:
            self._documents[session_id] = session.model_dump(mode="json")

    async def patch(self, session_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            document = self._documents.get(session_id)
            if document is None:
                raise SessionWriteFailure(f"세션 {session_id} 문서가 없습니다.")
            apply_patch(document, fields)

    def raw(self, session_id: str) -> Optional[Dict[str, Any]]:
        """저장된 문서 사본 (점검/테스트용)."""
        with self._lock:
            data = self._documents.get(session_id)
            return json.loads(json.dumps(data)) if data is not None else None


class JsonFileSessionStore(SessionStore):
    """디렉토리에 세션당 <id>.json 파일로 저장. 파일 I/O는 스레드로 넘긴다."""

    def __init__(self, directory: str):
        self._directory = directory
        self._lock = threading.Lock()
        os.makedirs(directory, exist_ok=True)

    def _path(self, session_id: str) -> str:
        if not _SAFE_ID.match(session_id):
            raise ValueError(f"잘못된 세션 ID: {session_id!r}")
        return os.path.join(self._directory, f"{session_id}.json")

    def _read(self, path: str) -> Optional[Dict[str, Any]]:
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, path: str, document: Dict[str, Any]) -> None:
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(document, f, ensure_ascii=False)
        os.replace(tmp_path, path)

    def _get_sync(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._read(self._path(session_id))

    def _put_sync(self, session_id: str, document: Dict[str, Any]) -> None:
        with self._lock:
            self._write(self._path(session_id), document)

    def _patch_sync(self, session_id: str, fields: Dict[str, Any]) -> None:
        path = self._path(session_id)
        with self._lock:
            document = self._read(path)
            if document is None:
                raise SessionWriteFailure(f"세션 {session_id} 문서가 없습니다.")
            self._write(path, apply_patch(document, fields))

    async def get(self, session_id: str) -> Optional[ExamSession]:
        try:
            data = await asyncio.to_thread(self._get_sync, session_id)
        except (OSError, ValueError) as e:
            raise SessionLoadFailure(f"세션 {session_id} 읽기 실패: {e}") from e
        if data is None:
            return None
        return _parse(session_id, data)

    async def put(self, session_id: str, session: ExamSession) -> None:
        try:
            await asyncio.to_thread(self._put_sync, session_id, session.model_dump(mode="json"))
        except (OSError, ValueError) as e:
            raise SessionWriteFailure(f"세션 {session_id} 저장 실패: {e}") from e

    async def patch(self, session_id: str, fields: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._patch_sync, session_id, fields)
        except (OSError, ValueError) as e:
            raise SessionWriteFailure(f"세션 {session_id} 갱신 실패: {e}") from e


def create_store(backend: str, directory: str) -> SessionStore:
    """설정값으로 저장소 백엔드 생성."""
    if backend == "file":
        logger.info(f"세션 저장소: JSON 파일 ({directory})")
        return JsonFileSessionStore(directory)
    if backend != "memory":
        logger.warning(f"알 수 없는 저장소 백엔드 '{backend}' → 메모리 저장소 사용")
    return InMemorySessionStore()
