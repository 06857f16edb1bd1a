"""
services/exam_service.py

시험 채점 및 결과 분석 비즈니스 로직.
순수 Python 함수로 구성 — UI 코드, 전역 상태 변경 없음.
"""

from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence

from config import PASS_SCORE
from exam_portal.errors import DegenerateScoringInput
from exam_portal.models.question_model import Question
from exam_portal.models.session_state import UserAnswer


class ScoreResult(NamedTuple):
    correct_count: int
    total: int
    percentage: int


def _normalize(option: Optional[str]) -> str:
    return (option or "").lower()


def _is_correct(answer: UserAnswer, question: Question) -> bool:
    if not question.correct_answer:
        return False
    return _normalize(answer.selected_option) == _normalize(question.correct_answer)


def calculate_score(
    answers: Mapping[str, UserAnswer],
    questions: Sequence[Question],
    total_questions: int,
) -> ScoreResult:
    """
    기록된 답안을 채점하여 맞은 개수와 100점 만점 환산 점수를 반환한다.

    정답 판정 기준: 선택한 보기와 question.correct_answer를 대소문자 구분 없이 비교.
    문제 세트에 없는 문제 ID의 답안은 무시한다 (오답도, 오류도 아님).

    Args:
        answers:         {question_id: UserAnswer}
        questions:       출제된 Question 리스트.
        total_questions: 세션의 총 문항 수 (분모).

    Returns:
        ScoreResult. percentage는 사사오입한 정수.

    Raises:
        DegenerateScoringInput: total_questions가 0 이하일 때.
    """
    if total_questions <= 0:
        raise DegenerateScoringInput(f"총 문항 수가 0입니다: {total_questions}")

    by_id: Dict[str, Question] = {q.key: q for q in questions}
    correct_count = 0
    for answer in answers.values():
        question = by_id.get(str(answer.question_id))
        if question is not None and _is_correct(answer, question):
            correct_count += 1

    # round-half-up: floor(correct / total * 100 + 0.5), 정수 연산으로 계산
    percentage = (correct_count * 200 + total_questions) // (2 * total_questions)
    return ScoreResult(correct_count, total_questions, percentage)


def get_incorrect_questions(
    answers: Mapping[str, UserAnswer],
    questions: Sequence[Question],
) -> List[Question]:
    """
    오답 문제 리스트를 반환한다 (오답 노트용).

    - 선택한 답이 정답과 다르거나 미응답이면 오답
    - correct_answer가 없는 문제는 채점 불가 → 제외

    원본 순서 유지.
    """
    incorrect: List[Question] = []
    for q in questions:
        if not q.correct_answer:
            continue
        answer = answers.get(q.key)
        if answer is None or not _is_correct(answer, q):
            incorrect.append(q)
    return incorrect


def is_passed(percentage: float, pass_score: float = PASS_SCORE) -> bool:
    """percentage >= pass_score 이면 합격."""
    return percentage >= pass_score
