import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/echopages.db")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
LLM_BASE_URL = os.getenv("LLM_BASE_URL")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")
MISTRAL_API_KEY = os.getenv("MISTRAL_API_KEY")
ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY")
GOOGLE_CLOUD_API_KEY = os.getenv("GOOGLE_CLOUD_API_KEY")

TTS_PROVIDER = os.getenv("TTS_PROVIDER", "openai")
STATIC_FILES_URL = os.getenv("STATIC_FILES_URL", "http://localhost:5015")

# Empirically tuned segmentation constants
COVERAGE_THRESHOLD = float(os.getenv("COVERAGE_THRESHOLD", "0.95"))
CHAPTER_COVERAGE_WARNING = float(os.getenv("CHAPTER_COVERAGE_WARNING", "0.90"))
MARKER_MAX_LINE_LENGTH = int(os.getenv("MARKER_MAX_LINE_LENGTH", "100"))
MARKER_CONTEXT_LINE_LENGTH = int(os.getenv("MARKER_CONTEXT_LINE_LENGTH", "5"))
MARKER_MIN_GAP_LINES = int(os.getenv("MARKER_MIN_GAP_LINES", "30"))
MIN_CHAPTER_CHARS = int(os.getenv("MIN_CHAPTER_CHARS", "200"))
MIN_CHAPTER_WORDS = int(os.getenv("MIN_CHAPTER_WORDS", "50"))

CHUNK_BATCH_SIZE = int(os.getenv("CHUNK_BATCH_SIZE", "3"))
TTS_MAX_ATTEMPTS = int(os.getenv("TTS_MAX_ATTEMPTS", "3"))
TTS_BACKOFF_SECONDS = float(os.getenv("TTS_BACKOFF_SECONDS", "2.0"))
TTS_REQUEST_TIMEOUT = float(os.getenv("TTS_REQUEST_TIMEOUT", "60"))

WORKER_CONCURRENCY = int(os.getenv("WORKER_CONCURRENCY", "1"))
WORKER_POLL_INTERVAL = float(os.getenv("WORKER_POLL_INTERVAL", "1.0"))
JOB_VISIBILITY_TIMEOUT = int(os.getenv("JOB_VISIBILITY_TIMEOUT", "1800"))
# A chunk left in processing this long belongs to a dead worker
CHUNK_STALE_SECONDS = int(os.getenv("CHUNK_STALE_SECONDS", "600"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
