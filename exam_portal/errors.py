"""
errors.py

시험 세션 코어에서 사용하는 예외 계층.
신원/문제은행 오류만 사용자에게 노출되고, 저장소 쓰기 오류는 로그 후 삼킨다.
"""


class ExamPortalError(Exception):
    """exam_portal 예외의 공통 부모."""


class IdentityUnavailable(ExamPortalError):
    """익명 신원을 발급할 수 없음 (익명 인증 비활성화 등). 세션 생성 중단."""


class SessionLoadFailure(ExamPortalError):
    """세션 복원 읽기 실패 또는 손상된 문서. '기존 세션 없음'으로 취급."""


class SessionWriteFailure(ExamPortalError):
    """세션 저장(생성, 답안 패치, 종료) 실패. 시험 진행을 막지 않는다."""


class UnknownQuestionReference(ExamPortalError, ValueError):
    """현재 문제 세트에 없는 문제 ID로 답안을 기록하려 함 (호출자 오류)."""

    def __init__(self, session_id: str, question_id: str):
        super().__init__(f"세션 {session_id}에 문제 {question_id}가 없습니다.")
        self.session_id = session_id
        self.question_id = question_id


class DegenerateScoringInput(ExamPortalError, ValueError):
    """총 문항 수 0으로 채점을 요청함."""


class QuestionSourceError(ExamPortalError):
    """문제은행을 읽지 못함."""
