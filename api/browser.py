"""
api/browser.py — 브라우저별 인메모리 상태 (쿠키 기반)

각 브라우저에 UUID ID를 발급하고, 브라우저별로 독립된 상태를 유지.
  - local_storage : 브라우저 로컬 저장소 역할 (익명 UID, 과목별 세션 포인터)
  - exam_session  : 현재 화면이 들고 있는 ExamSession 핸들
  - manager / countdown : 브라우저 하나에 하나씩
TTL(기본 1시간) 경과 시 자동 만료.
"""

import threading
import time
import uuid
from typing import Any, Dict, List, Optional

from config import BROWSER_TTL


def _new_state() -> Dict[str, Any]:
    return {
        "local_storage": {},
        "exam_session": None,
        "questions": [],
        "time_left": "",
        "manager": None,
        "countdown": None,
    }


class BrowserRegistry:
    def __init__(self, ttl: int = BROWSER_TTL):
        self.ttl = ttl
        self._lock = threading.Lock()
        self._states: Dict[str, Dict[str, Any]] = {}
        self._timestamps: Dict[str, float] = {}

    def create(self) -> str:
        """새 브라우저 상태를 생성하고 ID를 반환."""
        bid = uuid.uuid4().hex
        with self._lock:
            self._states[bid] = _new_state()
            self._timestamps[bid] = time.time()
        return bid

    def get(self, bid: str) -> Optional[Dict[str, Any]]:
        """브라우저 상태를 가져옴. 만료되었거나 없으면 None."""
        with self._lock:
            if bid not in self._states:
                return None
            if time.time() - self._timestamps[bid] > self.ttl:
                self._drop(bid)
                return None
            self._timestamps[bid] = time.time()  # 접근 시 갱신
            return self._states[bid]

    def states(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._states.values())

    def cleanup_expired(self) -> int:
        """만료된 브라우저 상태를 정리. 제거된 수 반환."""
        now = time.time()
        with self._lock:
            expired = [bid for bid, ts in self._timestamps.items() if now - ts > self.ttl]
            for bid in expired:
                self._drop(bid)
        return len(expired)

    def _drop(self, bid: str) -> None:
        state = self._states.pop(bid)
        del self._timestamps[bid]
        countdown = state.get("countdown")
        if countdown is not None:
            countdown.stop()
