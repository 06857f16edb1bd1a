import pytest

from exam_portal.errors import DegenerateScoringInput
from exam_portal.models.question_model import Question
from exam_portal.models.session_state import UserAnswer
from exam_portal.services.exam_service import (
    calculate_score, get_incorrect_questions, is_passed
)


def _answers(**options):
    return {qid: UserAnswer(question_id=qid, selected_option=opt) for qid, opt in options.items()}


class TestCalculateScore:
    def test_case_insensitive_match(self):
        questions = [
            Question(id=1, correct_answer="B"),
            Question(id=2, correct_answer="D"),
        ]
        answers = {
            "1": UserAnswer(question_id="1", selected_option="b"),
            "2": UserAnswer(question_id="2", selected_option="A"),
        }

        result = calculate_score(answers, questions, 2)

        assert result.correct_count == 1
        assert result.percentage == 50

    def test_whitespace_is_not_trimmed(self):
        questions = [Question(id=1, correct_answer="B"), Question(id=2, correct_answer="C")]
        answers = {
            "1": UserAnswer(question_id="1", selected_option=" b"),
            "2": UserAnswer(question_id="2", selected_option="c"),
        }

        result = calculate_score(answers, questions, 2)

        assert result.correct_count == 1
        assert result.percentage == 50

    def test_is_deterministic(self, questions):
        answers = _answers(p1="A", p2="C", p3="c")
        first = calculate_score(answers, questions, 4)
        second = calculate_score(answers, list(reversed(questions)), 4)
        assert first == second

    def test_unknown_question_is_ignored(self, questions):
        answers = _answers(p1="A", zzz="A")
        result = calculate_score(answers, questions, 4)
        assert result.correct_count == 1
        assert result.percentage == 25

    def test_question_without_correct_answer_never_matches(self):
        questions = [Question(id="x"), Question(id="y", correct_answer="A")]
        result = calculate_score(_answers(x="A", y="A"), questions, 2)
        assert result.correct_count == 1

    def test_rounds_half_up(self):
        questions = [Question(id=str(i), correct_answer="A") for i in range(8)]
        result = calculate_score(_answers(**{"0": "A"}), questions, 8)
        # 1/8 = 12.5% → 13
        assert result.percentage == 13

    def test_zero_total_is_rejected(self, questions):
        with pytest.raises(DegenerateScoringInput):
            calculate_score({}, questions, 0)

    def test_empty_answers_score_zero(self, questions):
        assert calculate_score({}, questions, 4).percentage == 0


class TestIncorrectQuestions:
    def test_wrong_and_unanswered_are_incorrect(self, questions):
        incorrect = get_incorrect_questions(_answers(p1="a", p2="C"), questions)
        assert [q.key for q in incorrect] == ["p2", "p3", "c1"]

    def test_questions_without_answer_key_are_excluded(self):
        incorrect = get_incorrect_questions({}, [Question(id="x")])
        assert incorrect == []


class TestIsPassed:
    @pytest.mark.parametrize("score,expected", [(59, False), (60, True), (100, True)])
    def test_default_pass_score(self, score, expected):
        assert is_passed(score) is expected
