import asyncio
import json

import pytest

from exam_portal.errors import SessionWriteFailure
from exam_portal.models.question_model import Question
from exam_portal.services.identity import AnonymousIdentityResolver
from exam_portal.services.session_manager import ExamSessionManager
from exam_portal.services.session_pointer import LocalSessionPointer
from exam_portal.services.session_store import InMemorySessionStore


BANK = [
    {"id": "p1", "text": "q1", "subject": "Physics", "chapter": "Optics", "correct_answer": "A"},
    {"id": "p2", "text": "q2", "subject": "Physics", "chapter": "Optics", "correct_answer": "B"},
    {"id": "p3", "text": "q3", "subject": "Physics", "chapter": "Mechanics", "correct_answer": "C"},
    {"id": "c1", "text": "q4", "subject": "Chemistry", "chapter": "Acids", "correct_answer": "D"},
]


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingStore(InMemorySessionStore):
    """InMemorySessionStore + 호출 기록, 실패/지연 주입."""

    def __init__(self):
        super().__init__()
        self.puts = []
        self.patches = []
        self.fail_put = False
        self.fail_patch = False
        self.patch_delays = []

    async def put(self, session_id, session):
        if self.fail_put:
            raise SessionWriteFailure("put 실패")
        self.puts.append(session_id)
        await super().put(session_id, session)

    async def patch(self, session_id, fields):
        if self.patch_delays:
            await asyncio.sleep(self.patch_delays.pop(0))
        if self.fail_patch:
            raise SessionWriteFailure("patch 실패")
        self.patches.append((session_id, dict(fields)))
        await super().patch(session_id, fields)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def browser_storage():
    return {}


@pytest.fixture
def manager(store, clock, browser_storage):
    return ExamSessionManager(
        store=store,
        identity=AnonymousIdentityResolver(browser_storage),
        pointer=LocalSessionPointer(browser_storage),
        clock=clock,
    )


@pytest.fixture
def questions():
    return [Question.model_validate(item) for item in BANK]


@pytest.fixture
def bank_file(tmp_path):
    path = tmp_path / "question_bank.json"
    path.write_text(json.dumps(BANK), encoding="utf-8")
    return str(path)
