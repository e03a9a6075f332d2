"""Centralized configuration: every env var in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- Admin ---
ADMIN_PIN = os.getenv("ADMIN_PIN", "labquiz")

# --- Question bank ---
QUESTIONS_FILE = os.getenv(
    "QUESTIONS_FILE",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "data", "questions.json"),
)
DEFAULT_QUESTION_TIMER = 30  # seconds
MIN_QUESTION_TIMER = 5
MAX_QUESTION_TIMER = 300

# --- Rounds ---
FINAL_ROUND = 3
QUALIFY_FRACTION = 0.5  # cutoff = ceil(fraction * question count)

# --- Scoring ---
BASE_POINTS = 1
SPEED_BONUS_WINDOW = 5  # seconds elapsed, inclusive
SPEED_BONUS_POINTS = 1
FIRST_BLOOD_BONUS = 2
WRONG_ANSWER_PENALTY = 2

# --- Timing ---
TICK_SECONDS = float(os.getenv("TICK_SECONDS", "1"))
REVEAL_DELAY = float(os.getenv("REVEAL_DELAY", "3"))  # grading -> leaderboard
NEXT_QUESTION_DELAY = float(os.getenv("NEXT_QUESTION_DELAY", "5"))  # leaderboard -> next question

# --- Leaderboard ---
LEADERBOARD_BROADCAST_SIZE = 10

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10  # max messages per second per client
MAX_WS_MESSAGE_SIZE = 4096  # bytes
OUTBOUND_QUEUE_SIZE = 256  # pending events per client before it is dropped
SEND_TIMEOUT = 5.0  # seconds

# --- Players ---
MAX_NAME_LENGTH = 60
MAX_ROLL_NUMBER_LENGTH = 20
MAX_PLAYERS = 500

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
