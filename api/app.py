"""
api/app.py — FastAPI 앱 인스턴스 + 브라우저 쿠키 미들웨어 + static 파일 서빙
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import FileResponse

import config
from api.browser import BrowserRegistry
from api.routes import router
from exam_portal.services.question_service import JsonQuestionSource, QuestionSource
from exam_portal.services.session_store import SessionStore, create_store

logger = logging.getLogger(__name__)

BROWSER_COOKIE = "exam_browser"
CLEANUP_INTERVAL = 300  # 5분


async def _cleanup_loop(browsers: BrowserRegistry) -> None:
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL)
        removed = browsers.cleanup_expired()
        if removed:
            logger.info(f"만료 브라우저 상태 {removed}개 정리")


def create_app(
    store: Optional[SessionStore] = None,
    question_source: Optional[QuestionSource] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cleanup = asyncio.create_task(_cleanup_loop(app.state.browsers))
        yield
        cleanup.cancel()
        # 종료 전에 남은 답안 저장을 마무리
        for state in app.state.browsers.states():
            if state.get("countdown") is not None:
                state["countdown"].stop()
            if state.get("manager") is not None:
                await state["manager"].flush()

    app = FastAPI(title="Exam Portal", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.store = store or create_store(config.SESSION_STORE_BACKEND, config.SESSION_STORE_DIR)
    app.state.question_source = question_source or JsonQuestionSource(config.QUESTION_BANK_FILE)
    app.state.browsers = BrowserRegistry(config.BROWSER_TTL)
    app.state.clock = clock

    # CORS (모바일 브라우저 등 다양한 출처 허용)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 브라우저 미들웨어: 쿠키에서 브라우저 ID를 읽고, 없으면 새로 발급
    @app.middleware("http")
    async def browser_middleware(request: Request, call_next):
        browsers: BrowserRegistry = request.app.state.browsers
        bid = request.cookies.get(BROWSER_COOKIE)
        if not bid or browsers.get(bid) is None:
            bid = browsers.create()

        request.state.browser_id = bid
        response: Response = await call_next(request)
        response.set_cookie(
            key=BROWSER_COOKIE,
            value=bid,
            httponly=True,
            samesite="lax",
            max_age=browsers.ttl,
        )
        return response

    app.include_router(router)

    # static 파일 마운트
    if os.path.isdir(config.STATIC_DIR):
        app.mount("/static", StaticFiles(directory=config.STATIC_DIR), name="static")

    # 루트 → index.html
    @app.get("/")
    async def serve_index():
        index_path = os.path.join(config.STATIC_DIR, "index.html")
        if os.path.exists(index_path):
            return FileResponse(index_path)
        return {"error": "index.html not found"}

    return app
