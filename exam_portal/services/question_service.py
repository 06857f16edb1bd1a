"""
services/question_service.py

문제은행 조회 (읽기 전용).
Public API:
  - JsonQuestionSource(path).get_questions(subject_id, chapter_id) -> List[Question]
  - JsonQuestionSource(path).list_subjects()                       -> List[Subject]
  - select_exam_questions(questions, cap, seed)                    -> List[Question]
"""

import asyncio
import json
import logging
import os
import random
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from config import MAX_EXAM_QUESTIONS, QUESTION_FETCH_LIMIT
from exam_portal.errors import QuestionSourceError
from exam_portal.models.question_model import Chapter, Question, Subject

logger = logging.getLogger(__name__)

ALL_CHAPTERS = "all"


class QuestionSource(ABC):
    @abstractmethod
    async def get_questions(self, subject_id: str, chapter_id: Optional[str] = None) -> List[Question]:
        """과목/단원으로 문제 조회. 실패 시 QuestionSourceError."""

    @abstractmethod
    async def list_subjects(self) -> List[Subject]:
        """과목 및 단원 목록."""


def _matches(question: Question, subject_id: str, chapter_id: Optional[str]) -> bool:
    if (question.subject or "").lower() != subject_id.lower():
        return False
    if chapter_id and chapter_id != ALL_CHAPTERS:
        return question.chapter == chapter_id
    return True


class JsonQuestionSource(QuestionSource):
    """JSON 배열 파일 하나로 된 문제은행."""

    def __init__(self, path: str, limit: int = QUESTION_FETCH_LIMIT):
        self._path = path
        self._limit = limit

    def _load_sync(self) -> List[Question]:
        if not os.path.exists(self._path):
            raise QuestionSourceError(f"문제은행 파일이 없습니다: {self._path}")
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            raise QuestionSourceError(f"문제은행을 읽지 못했습니다: {e}") from e

        questions: List[Question] = []
        for item in raw:
            try:
                questions.append(Question.model_validate(item))
            except ValidationError as e:
                # 잘못된 문제 1건은 건너뛰고 나머지는 사용
                logger.warning(f"문제 검증 실패, 건너뜀: {item.get('id') if isinstance(item, dict) else item} — {e}")
        return questions

    async def _load(self) -> List[Question]:
        return await asyncio.to_thread(self._load_sync)

    async def get_questions(self, subject_id: str, chapter_id: Optional[str] = None) -> List[Question]:
        questions = await self._load()
        matched = [q for q in questions if _matches(q, subject_id, chapter_id)]
        logger.info(f"문제 조회: subject={subject_id} chapter={chapter_id or ALL_CHAPTERS} → {len(matched)}건")
        return matched[:self._limit]

    async def list_subjects(self) -> List[Subject]:
        questions = await self._load()
        chapters: Dict[str, List[str]] = {}
        names: Dict[str, str] = {}
        for q in questions:
            if not q.subject:
                continue
            key = q.subject.lower()
            names.setdefault(key, q.subject)
            bucket = chapters.setdefault(key, [])
            if q.chapter and q.chapter not in bucket:
                bucket.append(q.chapter)
        return [
            Subject(
                id=key,
                name=names[key],
                chapters=[Chapter(id=c, name=c) for c in sorted(chapters[key])],
            )
            for key in sorted(names)
        ]


def select_exam_questions(
    questions: Sequence[Question],
    cap: int = MAX_EXAM_QUESTIONS,
    seed: Optional[int] = None,
) -> List[Question]:
    """무작위로 섞은 뒤 최대 cap개를 자른다. seed를 주면 결과가 재현된다."""
    shuffled = list(questions)
    random.Random(seed).shuffle(shuffled)
    return shuffled[:cap]
