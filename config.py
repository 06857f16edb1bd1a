import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
STATIC_DIR = os.path.join(BASE_DIR, "static")
DATA_DIR = os.getenv("EXAM_DATA_DIR", os.path.join(BASE_DIR, "data"))
LOG_FILE = os.path.join(BASE_DIR, "launch.log")

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))

# 시험 설정
EXAM_DURATION_MINUTES = int(os.getenv("EXAM_DURATION_MINUTES", "30"))
MAX_EXAM_QUESTIONS = int(os.getenv("MAX_EXAM_QUESTIONS", "20"))   # 시험당 출제 문항 수 상한
QUESTION_FETCH_LIMIT = 100   # 문제은행 조회 상한
PASS_SCORE = float(os.getenv("PASS_SCORE", "60"))
COUNTDOWN_INTERVAL = 1.0     # 타이머 갱신 주기 (초)

# 문제은행
QUESTION_BANK_FILE = os.getenv("QUESTION_BANK_FILE", os.path.join(DATA_DIR, "question_bank.json"))

# 세션 저장소: "memory" 또는 "file"
SESSION_STORE_BACKEND = os.getenv("SESSION_STORE_BACKEND", "memory")
SESSION_STORE_DIR = os.getenv("SESSION_STORE_DIR", os.path.join(DATA_DIR, "exam_sessions"))

# 익명 인증
ANONYMOUS_AUTH_ENABLED = os.getenv("ANONYMOUS_AUTH_ENABLED", "1").lower() in ("1", "true", "yes")

# 브라우저 상태 유지 시간 (초)
BROWSER_TTL = int(os.getenv("BROWSER_TTL", "3600"))
