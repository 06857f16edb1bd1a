"""
main.py — 시험 포털 서버 진입점
"""

import argparse
import logging
import os
import sys

# ── 패키지 경로 설정 (반드시 최상단) ──────────────────────────────────────────
_BASE_DIR = os.path.dirname(os.path.abspath(__file__))
if _BASE_DIR not in sys.path:
    sys.path.insert(0, _BASE_DIR)

import uvicorn

import config
from api.app import create_app
from exam_portal.services.question_service import JsonQuestionSource
from exam_portal.services.session_store import create_store

# ── 로깅 설정 ────────────────────────────────────────────────────────────────
try:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        handlers=[
            logging.FileHandler(config.LOG_FILE, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )
except PermissionError:
    # 로그 파일 점유 시 콘솔 출력만 사용
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="exam-portal", description="익명 시험 응시 포털 서버")
    parser.add_argument("--host", default=config.DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=config.DEFAULT_PORT)
    parser.add_argument("--store", choices=["memory", "file"], default=config.SESSION_STORE_BACKEND,
                        help="세션 저장소 종류 (file이면 --store-dir에 세션별 JSON 저장)")
    parser.add_argument("--store-dir", default=config.SESSION_STORE_DIR)
    parser.add_argument("--questions", default=config.QUESTION_BANK_FILE, help="문제 은행 JSON 경로")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = _parse_args(argv)
    os.chdir(config.BASE_DIR)

    app = create_app(
        store=create_store(args.store, args.store_dir),
        question_source=JsonQuestionSource(args.questions),
    )
    logger.info(f"=== Exam Portal Started === http://{args.host}:{args.port} (store={args.store})")
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
