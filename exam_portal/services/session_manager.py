"""
services/session_manager.py

시험 세션 생명주기 관리.
Public API:
  - initialize(...)      -> InitResult   : 진행 중 세션 복원 또는 새 세션 생성
  - save_answer(...)     -> ExamSession  : 낙관적 로컬 기록 + 비동기 원격 저장
  - finish(session)      -> ExamSession  : IN_PROGRESS → COMPLETED
  - abandon(session)     -> ExamSession  : IN_PROGRESS → ABANDONED
  - record_score(...)    -> ExamSession  : 채점 결과 기록
  - flush()                              : 대기 중인 답안 저장 완료 대기

설계 원칙:
- 로컬 세션 객체가 현재 페이지의 기준 상태. 원격 저장 실패는 로그만 남긴다.
- 같은 문제의 답안 저장은 호출 순서대로 저장소에 도달한다.
- end_time은 생성 시 한 번만 계산한다.
"""

import asyncio
import logging
import time
import uuid
from typing import Callable, Dict, Iterable, NamedTuple, Optional, Set, Tuple

from exam_portal.errors import (
    SessionLoadFailure, SessionWriteFailure, UnknownQuestionReference
)
from exam_portal.models.session_state import (
    DeviceInfo, ExamSession, SessionStatus, UserAnswer
)
from exam_portal.services.exam_service import ScoreResult
from exam_portal.services.identity import IdentityResolver
from exam_portal.services.session_pointer import LocalSessionPointer
from exam_portal.services.session_store import SessionStore

logger = logging.getLogger(__name__)


class InitResult(NamedTuple):
    session: ExamSession
    error: Optional[SessionWriteFailure] = None
    restored: bool = False


class ExamSessionManager:
    def __init__(
        self,
        store: SessionStore,
        identity: IdentityResolver,
        pointer: LocalSessionPointer,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._identity = identity
        self._pointer = pointer
        self._clock = clock
        # (session_id, question_id) → 마지막으로 예약된 저장 작업
        self._write_chains: Dict[Tuple[str, str], asyncio.Task] = {}
        self._pending: Set[asyncio.Task] = set()
        # session_id → 진행 중인 종료 저장 작업
        self._closing: Dict[str, asyncio.Task] = {}

    # ── 초기화 / 복원 ─────────────────────────────────────────────────────

    async def _restore(self, subject_id: str) -> Optional[ExamSession]:
        session_id = self._pointer.get(subject_id)
        if not session_id:
            return None

        try:
            stored = await self._store.get(session_id)
        except SessionLoadFailure as e:
            logger.warning(f"세션 복원 실패, 새 세션을 생성합니다: {e}")
            stored = None

        if stored is not None and stored.is_live(self._clock()):
            return stored

        # 종료되었거나 만료된 세션을 가리키는 포인터 정리
        self._pointer.remove(subject_id)
        return None

    async def initialize(
        self,
        subject_id: str,
        total_questions: int,
        duration_minutes: float,
        chapter_id: Optional[str] = None,
        question_ids: Iterable = (),
        device_info: Optional[DeviceInfo] = None,
    ) -> InitResult:
        """
        진행 중 세션을 복원하거나 새 세션을 만든다.

        Raises:
            IdentityUnavailable: 익명 신원 발급 실패 (세션 생성 안 함).
            ValueError:          total_questions < 0 또는 duration_minutes <= 0.
        """
        if total_questions < 0:
            raise ValueError(f"total_questions는 0 이상이어야 합니다: {total_questions}")
        if duration_minutes <= 0:
            raise ValueError(f"duration_minutes는 양수여야 합니다: {duration_minutes}")

        user_id = await self._identity.resolve()

        restored = await self._restore(subject_id)
        if restored is not None:
            logger.info(f"진행 중인 세션 복원: {restored.id} (subject={subject_id})")
            return InitResult(restored, restored=True)

        now = self._clock()
        session = ExamSession(
            id=uuid.uuid4().hex,
            user_id=user_id,
            subject_id=subject_id,
            chapter_id=chapter_id,
            device_info=device_info or DeviceInfo(),
            created_at=now,
            last_active_at=now,
            status=SessionStatus.IN_PROGRESS,
            start_time=now,
            end_time=now + duration_minutes * 60,
            total_questions=total_questions,
            question_ids=[str(qid) for qid in question_ids],
        )

        try:
            await self._store.put(session.id, session)
        except SessionWriteFailure as e:
            logger.error(f"세션 생성 저장 실패 (새로고침 시 복원 불가): {e}")
            return InitResult(session, e)

        self._pointer.set(subject_id, session.id)
        logger.info(f"새 세션 생성: {session.id} (subject={subject_id}, {total_questions}문항)")
        return InitResult(session)

    # ── 답안 기록 ─────────────────────────────────────────────────────────

    def save_answer(
        self,
        session: Optional[ExamSession],
        question_id,
        selected_option: str,
    ) -> Optional[ExamSession]:
        """
        답안을 로컬 세션에 즉시 기록하고 원격 저장은 백그라운드 작업으로 예약한다.
        실행 중인 이벤트 루프 안에서 호출해야 한다.

        Raises:
            UnknownQuestionReference: 세션의 문제 세트에 없는 문제 ID.
        """
        if session is None or session.is_terminal:
            return session

        qid = str(question_id)
        if not session.knows_question(qid):
            logger.warning(f"알 수 없는 문제 ID로 답안 기록 시도: session={session.id} question={qid}")
            raise UnknownQuestionReference(session.id, qid)

        now = self._clock()
        answer = UserAnswer(question_id=qid, selected_option=selected_option, timestamp=now)
        session.answers[qid] = answer
        session.last_active_at = now

        fields = {f"answers.{qid}": answer, "last_active_at": now}
        key = (session.id, qid)
        previous = self._write_chains.get(key)
        task = asyncio.get_running_loop().create_task(
            self._persist_answer(session.id, fields, previous)
        )
        self._write_chains[key] = task
        self._pending.add(task)
        task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return session

    async def _persist_answer(
        self,
        session_id: str,
        fields: dict,
        previous: Optional[asyncio.Task],
    ) -> None:
        if previous is not None:
            # 같은 문제의 이전 저장이 끝난 뒤에 보낸다 (결과와 무관)
            await asyncio.wait([previous])
        try:
            await self._store.patch(session_id, fields)
        except SessionWriteFailure as e:
            logger.error(f"답안 저장 실패 (로컬 상태 유지): {e}")

    def _forget(self, key: Tuple[str, str], task: asyncio.Task) -> None:
        self._pending.discard(task)
        if self._write_chains.get(key) is task:
            del self._write_chains[key]

    async def flush(self) -> None:
        """예약된 답안 저장이 모두 끝날 때까지 대기."""
        while self._pending:
            await asyncio.wait(list(self._pending))

    # ── 종료 ─────────────────────────────────────────────────────────────

    async def _close(self, session: Optional[ExamSession], status: SessionStatus) -> Optional[ExamSession]:
        if session is None:
            return session
        if session.is_terminal:
            closing = self._closing.get(session.id)
            if closing is not None:
                # 먼저 시작된 종료 저장이 끝난 뒤에 돌려준다
                await asyncio.shield(closing)
            return session

        # await 전에 상태를 바꿔 두어야 동시에 들어온 두 번째 호출이 no-op이 된다
        now = self._clock()
        session.status = status
        session.last_active_at = now

        task = asyncio.get_running_loop().create_task(self._persist_close(session, status, now))
        self._closing[session.id] = task
        self._pending.add(task)
        task.add_done_callback(lambda t, sid=session.id: self._forget_close(sid, t))
        # 호출한 쪽(타이머 등)이 취소되어도 상태 저장과 포인터 정리는 계속된다
        await asyncio.shield(task)
        return session

    async def _persist_close(self, session: ExamSession, status: SessionStatus, now: float) -> None:
        # 이 세션의 답안 저장이 상태 변경보다 늦게 도착하지 않게 한다
        pending = [t for (sid, _), t in self._write_chains.items() if sid == session.id]
        if pending:
            await asyncio.wait(pending)

        try:
            await self._store.patch(session.id, {"status": status, "last_active_at": now})
        except SessionWriteFailure as e:
            logger.error(f"세션 {status.value} 저장 실패 (메모리 상태만 반영): {e}")

        self._pointer.remove(session.subject_id)
        logger.info(f"세션 종료: {session.id} → {status.value}")

    def _forget_close(self, session_id: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if self._closing.get(session_id) is task:
            del self._closing[session_id]

    async def finish(self, session: Optional[ExamSession]) -> Optional[ExamSession]:
        """제출 또는 시간 종료. 이미 종료된 세션이면 진행 중인 종료 저장만 기다린다."""
        return await self._close(session, SessionStatus.COMPLETED)

    async def abandon(self, session: Optional[ExamSession]) -> Optional[ExamSession]:
        """응시 포기 (홈으로 나가기)."""
        return await self._close(session, SessionStatus.ABANDONED)

    async def record_score(self, session: ExamSession, result: ScoreResult) -> ExamSession:
        """COMPLETED 세션에 점수를 기록한다."""
        if session.status != SessionStatus.COMPLETED:
            raise ValueError(f"완료되지 않은 세션은 점수를 기록할 수 없습니다: {session.status.value}")
        if session.score == result.percentage:
            return session

        session.score = result.percentage
        try:
            await self._store.patch(session.id, {"score": result.percentage})
        except SessionWriteFailure as e:
            logger.error(f"점수 저장 실패: {e}")
        return session

    def remaining_seconds(self, session: ExamSession) -> float:
        return max(0.0, session.end_time - self._clock())
