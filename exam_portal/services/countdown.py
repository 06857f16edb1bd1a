"""
services/countdown.py

남은 시험 시간을 매 초 계산해 알리고, 0이 되면 자동 제출한다.
남은 시간은 세션의 고정된 end_time에서만 계산한다 (누적 경과 시간 사용 안 함).
"""

import asyncio
import inspect
import logging
import math
import time
from typing import Any, Awaitable, Callable, Optional, Union

from config import COUNTDOWN_INTERVAL
from exam_portal.models.session_state import ExamSession

logger = logging.getLogger(__name__)

EXPIRED_DISPLAY = "0:00"


def format_remaining(seconds: float) -> str:
    """남은 초를 'M:SS' 형식으로 변환. 음수는 0:00."""
    if seconds <= 0:
        return EXPIRED_DISPLAY
    total = int(math.floor(seconds))
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"


class CountdownDriver:
    """
    화면(브라우저) 하나당 하나의 타이머.

    상태:
        Idle    — 세션 없음 (session is None)
        Running — 세션 진행 중, 매 interval 초마다 tick()

    on_tick(text):       남은 시간 문자열을 받는 콜백.
    on_expire(session):  시간 종료 시 단 한 번 호출 (보통 manager.finish).
    """

    def __init__(
        self,
        on_tick: Callable[[str], Any],
        on_expire: Callable[[ExamSession], Union[Awaitable[Any], Any]],
        clock: Callable[[], float] = time.time,
        interval: float = COUNTDOWN_INTERVAL,
    ):
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._clock = clock
        self._interval = interval
        self._session: Optional[ExamSession] = None
        self._task: Optional[asyncio.Task] = None
        self._expired = False

    @property
    def session(self) -> Optional[ExamSession]:
        return self._session

    @property
    def running(self) -> bool:
        return self._session is not None and not self._expired

    def start(self, session: ExamSession) -> None:
        """이전 타이머를 멈춘 뒤 새 세션의 타이머를 시작한다. 이벤트 루프 안에서 호출."""
        self.stop()
        self._session = session
        self._expired = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        """타이머를 멈추고 Idle로 돌아간다."""
        task, self._task = self._task, None
        # 만료 처리(자동 제출)가 시작된 타이머는 취소하지 않고 끝까지 둔다
        if task is not None and not task.done() and task is not _current_task() and not self._expired:
            task.cancel()
        self._session = None

    async def tick(self) -> str:
        """남은 시간을 한 번 계산해 알린다. 만료 시 on_expire를 최초 1회만 호출."""
        session = self._session
        if session is None or self._expired:
            return EXPIRED_DISPLAY

        remaining = session.end_time - self._clock()
        if remaining > 0:
            text = format_remaining(remaining)
            self._on_tick(text)
            return text

        self._expired = True
        self._on_tick(EXPIRED_DISPLAY)
        logger.info(f"시험 시간 종료 → 자동 제출: {session.id}")
        result = self._on_expire(session)
        if inspect.isawaitable(result):
            await result
        return EXPIRED_DISPLAY

    async def _run(self) -> None:
        me = asyncio.current_task()
        try:
            while self._task is me and self._session is not None and not self._expired:
                await self.tick()
                if self._expired or self._task is not me:
                    break
                await asyncio.sleep(self._interval)
        except Exception:
            logger.exception("타이머 처리 중 오류")


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
