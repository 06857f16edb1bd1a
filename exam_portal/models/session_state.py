"""
models/session_state.py

응시자 한 명의 시험 세션(OMR 카드) 모델.
Pydantic BaseModel 기반 — 저장소 직렬화/역직렬화 및 타입 안전성 확보.
UI 코드 없음.
"""

import time
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class SessionStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.ABANDONED})


class UserAnswer(BaseModel):
    question_id: str = Field(..., description="문제 ID (문자열로 정규화)")
    selected_option: str = Field(..., description="선택한 보기")
    timestamp: float = Field(default_factory=time.time, description="기록 시각 (Unix timestamp)")


class DeviceInfo(BaseModel):
    """세션 생성 시점의 기기 정보 스냅샷 (참고용)."""

    user_agent: str = ""
    screen_resolution: str = ""
    language: str = ""
    platform: str = ""


class ExamSession(BaseModel):
    """
    시험 세션 전체 상태.

    Attributes:
        id:              세션 고유 ID. 생성 후 불변.
        user_id:         익명 응시자 ID.
        subject_id:      과목 ID. 생성 후 불변.
        chapter_id:      단원 ID (없으면 과목 전체).
        device_info:     생성 시점 기기 정보.
        created_at:      생성 시각.
        last_active_at:  마지막 답안 기록/종료 시각.
        status:          IN_PROGRESS → COMPLETED | ABANDONED (역방향 없음).
        start_time:      시험 시작 시각.
        end_time:        시험 종료 시각. 생성 시 고정되며 재계산하지 않는다.
        answers:         {question_id: UserAnswer}. 같은 문제는 마지막 기록이 이긴다.
        total_questions: 출제 문항 수.
        question_ids:    출제된 문제 ID 목록 (복원 시 같은 문제 세트를 보여주기 위함).
        score:           채점 후에만 채워지는 백분율 점수.
    """

    id: str
    user_id: str
    subject_id: str
    chapter_id: Optional[str] = None
    device_info: DeviceInfo = Field(default_factory=DeviceInfo)
    created_at: float
    last_active_at: float
    status: SessionStatus = SessionStatus.IN_PROGRESS
    start_time: float
    end_time: float
    answers: Dict[str, UserAnswer] = Field(default_factory=dict)
    total_questions: int = Field(..., ge=0)
    question_ids: List[str] = Field(default_factory=list)
    score: Optional[int] = None

    @model_validator(mode='after')
    def validate_time_window(self) -> 'ExamSession':
        if self.end_time < self.start_time:
            raise ValueError("end_time은 start_time보다 빠를 수 없습니다.")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_live(self, now: float) -> bool:
        """진행 중이고 종료 시각 전이면 True."""
        return self.status == SessionStatus.IN_PROGRESS and now < self.end_time

    def knows_question(self, question_id: str) -> bool:
        if not self.question_ids:
            return True
        return question_id in self.question_ids
