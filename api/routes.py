"""
api/routes.py — FastAPI 엔드포인트
"""

import time
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

import config
from exam_portal.errors import (
    DegenerateScoringInput, IdentityUnavailable, QuestionSourceError,
    UnknownQuestionReference
)
from exam_portal.models.question_model import Question
from exam_portal.models.session_state import DeviceInfo, ExamSession, SessionStatus
from exam_portal.services.countdown import CountdownDriver, format_remaining
from exam_portal.services.exam_service import (
    calculate_score, get_incorrect_questions, is_passed
)
from exam_portal.services.identity import AnonymousIdentityResolver
from exam_portal.services.question_service import select_exam_questions
from exam_portal.services.session_manager import ExamSessionManager
from exam_portal.services.session_pointer import LocalSessionPointer

router = APIRouter()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class StartExamBody(BaseModel):
    subject_id: str
    chapter_id: Optional[str] = None
    screen_resolution: str = ""
    platform: str = ""

class SaveAnswerBody(BaseModel):
    question_id: Union[int, str]
    answer: str


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _browser(request: Request) -> Dict[str, Any]:
    state = request.app.state.browsers.get(request.state.browser_id)
    if state is None:
        raise HTTPException(status_code=401, detail="브라우저 세션이 만료되었습니다. 새로고침해 주세요.")
    return state


def _clock(request: Request):
    return request.app.state.clock or time.time


def _manager(request: Request, state: Dict[str, Any]) -> ExamSessionManager:
    if state["manager"] is None:
        storage = state["local_storage"]
        state["manager"] = ExamSessionManager(
            store=request.app.state.store,
            identity=AnonymousIdentityResolver(storage, enabled=config.ANONYMOUS_AUTH_ENABLED),
            pointer=LocalSessionPointer(storage),
            clock=_clock(request),
        )
    return state["manager"]


def _countdown(request: Request, state: Dict[str, Any]) -> CountdownDriver:
    if state["countdown"] is None:
        manager = _manager(request, state)

        def on_tick(text: str) -> None:
            state["time_left"] = text

        state["countdown"] = CountdownDriver(
            on_tick=on_tick,
            on_expire=manager.finish,
            clock=_clock(request),
        )
    return state["countdown"]


def _active_session(state: Dict[str, Any]) -> ExamSession:
    session: Optional[ExamSession] = state["exam_session"]
    if session is None:
        raise HTTPException(status_code=404, detail="시험 세션이 없습니다.")
    return session


def _device_info(request: Request, body: StartExamBody) -> DeviceInfo:
    return DeviceInfo(
        user_agent=request.headers.get("user-agent", ""),
        screen_resolution=body.screen_resolution,
        language=request.headers.get("accept-language", "").split(",")[0],
        platform=body.platform,
    )


def _session_to_dict(session: ExamSession, time_left: str) -> dict:
    return {
        "id": session.id,
        "subject_id": session.subject_id,
        "chapter_id": session.chapter_id,
        "status": session.status.value,
        "start_time": session.start_time,
        "end_time": session.end_time,
        "total": session.total_questions,
        "answered_count": len(session.answers),
        "user_answers": {k: v.selected_option for k, v in session.answers.items()},
        "question_ids": session.question_ids,
        "time_left": time_left,
        "score": session.score,
    }


async def _fetch_questions(source, subject_id: str, chapter_id: Optional[str]) -> List[Question]:
    try:
        return await source.get_questions(subject_id, chapter_id)
    except QuestionSourceError:
        raise HTTPException(status_code=503, detail="문제은행을 불러오지 못했습니다. 잠시 후 다시 시도해 주세요.")


def _time_left(request: Request, state: Dict[str, Any], session: ExamSession) -> str:
    if session.is_terminal:
        return format_remaining(0)
    return state["time_left"] or format_remaining(session.end_time - _clock(request)())


# ── 엔드포인트 ───────────────────────────────────────────────────────────────

@router.get("/api/subjects")
async def list_subjects(request: Request):
    try:
        subjects = await request.app.state.question_source.list_subjects()
    except QuestionSourceError:
        raise HTTPException(status_code=503, detail="문제은행을 불러오지 못했습니다. 잠시 후 다시 시도해 주세요.")
    return {"subjects": [s.model_dump() for s in subjects]}


@router.post("/api/exam/start")
async def start_exam(body: StartExamBody, request: Request):
    state = _browser(request)
    manager = _manager(request, state)
    source = request.app.state.question_source

    pool = await _fetch_questions(source, body.subject_id, body.chapter_id)
    if not pool:
        raise HTTPException(status_code=404, detail="선택한 과목/단원에 문제가 없습니다.")

    selected = select_exam_questions(pool, config.MAX_EXAM_QUESTIONS)
    try:
        result = await manager.initialize(
            body.subject_id,
            total_questions=len(selected),
            duration_minutes=config.EXAM_DURATION_MINUTES,
            chapter_id=body.chapter_id,
            question_ids=[q.id for q in selected],
            device_info=_device_info(request, body),
        )
    except IdentityUnavailable as e:
        raise HTTPException(status_code=403, detail=str(e))

    session = result.session
    questions = selected
    if result.restored:
        # 복원된 세션은 처음 출제된 문제 세트를 그대로 보여준다
        if session.chapter_id != body.chapter_id:
            pool = await _fetch_questions(source, session.subject_id, session.chapter_id)
        by_id = {q.key: q for q in pool}
        questions = [by_id[qid] for qid in session.question_ids if qid in by_id]

    state["exam_session"] = session
    state["questions"] = questions
    state["time_left"] = ""
    _countdown(request, state).start(session)

    return {
        "ok": True,
        "restored": result.restored,
        "warning": "진행 상황이 서버에 저장되지 않았습니다. 새로고침하면 시험이 복원되지 않습니다." if result.error else None,
        "session": _session_to_dict(session, _time_left(request, state, session)),
        "questions": [q.public_dict() for q in questions],
    }


@router.get("/api/exam/question/{index}")
async def get_question(index: int, request: Request):
    state = _browser(request)
    session = _active_session(state)
    questions: List[Question] = state["questions"]
    if not (0 <= index < len(questions)):
        raise HTTPException(status_code=404, detail="문제를 찾을 수 없습니다.")

    q = questions[index]
    saved = session.answers.get(q.key)
    d = q.public_dict()
    d.update({
        "saved_answer": saved.selected_option if saved else "",
        "index": index,
        "total": len(questions),
    })
    return d


@router.get("/api/exam/state")
async def get_exam_state(request: Request):
    state = _browser(request)
    session = _active_session(state)
    return _session_to_dict(session, _time_left(request, state, session))


@router.post("/api/exam/answer")
async def save_answer(body: SaveAnswerBody, request: Request):
    state = _browser(request)
    session = _active_session(state)
    if session.is_terminal:
        raise HTTPException(status_code=400, detail="이미 제출된 시험입니다.")

    try:
        _manager(request, state).save_answer(session, body.question_id, body.answer)
    except UnknownQuestionReference:
        raise HTTPException(status_code=400, detail="이 시험에 없는 문제입니다.")
    return {"ok": True, "answered_count": len(session.answers)}


async def _score(request: Request, state: Dict[str, Any], session: ExamSession):
    result = calculate_score(session.answers, state["questions"], session.total_questions)
    await _manager(request, state).record_score(session, result)
    return result


@router.post("/api/exam/submit")
async def submit_exam(request: Request):
    state = _browser(request)
    session = _active_session(state)
    if session.status == SessionStatus.ABANDONED:
        raise HTTPException(status_code=400, detail="포기한 시험은 제출할 수 없습니다.")

    _countdown(request, state).stop()
    await _manager(request, state).finish(session)
    try:
        result = await _score(request, state, session)
    except DegenerateScoringInput:
        raise HTTPException(status_code=400, detail="채점할 문제가 없습니다.")
    return {"ok": True, "score": result.percentage, "correct_count": result.correct_count}


@router.post("/api/exam/abandon")
async def abandon_exam(request: Request):
    state = _browser(request)
    session = _active_session(state)
    _countdown(request, state).stop()
    await _manager(request, state).abandon(session)
    state["exam_session"] = None
    state["questions"] = []
    return {"ok": True, "status": session.status.value}


@router.get("/api/results")
async def get_results(request: Request):
    state = _browser(request)
    session = _active_session(state)
    questions: List[Question] = state["questions"]
    if session.status != SessionStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="시험이 아직 제출되지 않았습니다.")

    try:
        result = await _score(request, state, session)
    except DegenerateScoringInput:
        raise HTTPException(status_code=400, detail="채점할 문제가 없습니다.")

    incorrect_data = []
    for q in get_incorrect_questions(session.answers, questions):
        d = q.model_dump()
        saved = session.answers.get(q.key)
        d["user_answer"] = saved.selected_option if saved else ""
        incorrect_data.append(d)

    return {
        "score": result.percentage,
        "passed": is_passed(result.percentage),
        "total": result.total,
        "correct_count": result.correct_count,
        "unanswered_count": result.total - len(session.answers),
        "incorrect_questions": incorrect_data,
    }


@router.post("/api/reset")
async def reset_exam(request: Request):
    """홈으로. 진행 중 세션은 포인터가 남아 있으므로 다시 시작하면 복원된다."""
    state = _browser(request)
    if state["countdown"] is not None:
        state["countdown"].stop()
    state["exam_session"] = None
    state["questions"] = []
    state["time_left"] = ""
    return {"ok": True}
