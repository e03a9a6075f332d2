from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from enum import Enum
import re

import config

ROLL_NUMBER_PATTERN = re.compile(r"^[0-9A-Z]+$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clean_text(text: str) -> str:
    """Strip HTML tags and control characters."""
    text = re.sub(r'<[^>]+>', '', text)
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


def _empty_round_scores() -> Dict[int, int]:
    return {n: 0 for n in range(1, config.FINAL_ROUND + 1)}


class QuestionType(str, Enum):
    SINGLE_CHOICE = "single_choice"
    CODE_SINGLE_CHOICE = "code_single_choice"
    MATCHING = "matching"


# Type names used by older question files
_QUESTION_TYPE_ALIASES = {
    "mcq": QuestionType.SINGLE_CHOICE,
    "code": QuestionType.CODE_SINGLE_CHOICE,
    "match": QuestionType.MATCHING,
    "match_following": QuestionType.MATCHING,
}


class PlayerStatus(str, Enum):
    ACTIVE = "active"
    SPECTATOR = "spectator"
    ELIMINATED = "eliminated"


class SessionStatus(str, Enum):
    LOBBY = "lobby"
    PLAYING = "playing"
    ROUND_FINISHED = "round_finished"
    GAME_FINISHED = "game_finished"


class Question(BaseModel):
    """A single quiz question. Frozen once loaded."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    level: int = 1
    type: QuestionType = QuestionType.SINGLE_CHOICE
    text: str
    timer: int = config.DEFAULT_QUESTION_TIMER
    options: List[str] = Field(default_factory=list)
    correct_answer: Optional[int] = Field(default=None, alias="correctAnswer")
    match_map: Optional[Dict[str, str]] = Field(default=None, alias="matchMap")
    code_snippet: Optional[str] = Field(default=None, alias="codeSnippet")

    @field_validator('id', mode='before')
    @classmethod
    def validate_id(cls, v: Any) -> str:
        if v is None or str(v).strip() == "":
            raise ValueError('Question id is required')
        return str(v).strip()

    @field_validator('level', mode='before')
    @classmethod
    def validate_level(cls, v: Any) -> int:
        level = int(v) if v not in (None, "") else 1
        if level < 1 or level > config.FINAL_ROUND:
            raise ValueError(f'Level must be 1-{config.FINAL_ROUND}')
        return level

    @field_validator('type', mode='before')
    @classmethod
    def validate_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return _QUESTION_TYPE_ALIASES.get(v, v)
        return v

    @field_validator('timer', mode='before')
    @classmethod
    def validate_timer(cls, v: Any) -> int:
        timer = int(v) if v else config.DEFAULT_QUESTION_TIMER
        if timer < config.MIN_QUESTION_TIMER or timer > config.MAX_QUESTION_TIMER:
            raise ValueError(
                f'Timer must be {config.MIN_QUESTION_TIMER}-{config.MAX_QUESTION_TIMER} seconds'
            )
        return timer

    @field_validator('text')
    @classmethod
    def validate_text(cls, v: str) -> str:
        v = _clean_text(v)
        if not v:
            raise ValueError('Question text is required')
        return v

    @field_validator('options')
    @classmethod
    def validate_options(cls, v: List[str]) -> List[str]:
        return [_clean_text(opt) for opt in v if _clean_text(opt)]

    @field_validator('match_map')
    @classmethod
    def validate_match_map(cls, v: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        if v is None:
            return v
        return {str(k).strip(): str(val).strip() for k, val in v.items()}

    @model_validator(mode='after')
    def validate_answer_key(self) -> 'Question':
        if self.type == QuestionType.MATCHING:
            if not self.match_map:
                raise ValueError('Matching question needs a non-empty matchMap')
        else:
            if not self.options:
                raise ValueError('Choice question needs options')
            if self.correct_answer is None or not (0 <= self.correct_answer < len(self.options)):
                raise ValueError('Invalid correctAnswer')
        return self

    def public_view(self, index: int, total: int, round_number: int) -> Dict[str, Any]:
        """Question as sent to participants. Never carries the answer key."""
        view: Dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "text": self.text,
            "code_snippet": self.code_snippet,
            "duration": self.timer,
            "current_question": index + 1,
            "total_questions": total,
            "round": round_number,
        }
        if self.type == QuestionType.MATCHING:
            view["left_items"] = list(self.match_map)
            view["right_items"] = sorted(self.match_map.values())
        else:
            view["options"] = list(self.options)
        return view


class AnswerSubmission(BaseModel):
    question_key: str  # "{round}_{index}"
    question_id: str
    payload: Any = None
    submitted_at: float
    sequence: int  # arrival order, breaks timestamp ties
    time_remaining: int


class Player(BaseModel):
    """Player record keyed by roll number; survives disconnects."""

    name: str
    roll_number: str
    connection_id: Optional[str] = None  # None while disconnected
    score: int = 0
    round_scores: Dict[int, int] = Field(default_factory=_empty_round_scores)
    status: PlayerStatus = PlayerStatus.ACTIVE
    answers: Dict[str, AnswerSubmission] = Field(default_factory=dict)
    joined_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_connected(self) -> bool:
        return self.connection_id is not None

    @property
    def is_active(self) -> bool:
        return self.status == PlayerStatus.ACTIVE

    def demote(self, status: PlayerStatus) -> bool:
        """Move an active player out of play. Returns False if already out."""
        if status == PlayerStatus.ACTIVE or not self.is_active:
            return False
        self.status = status
        return True

    def reset_for_new_game(self):
        self.score = 0
        self.round_scores = _empty_round_scores()
        self.status = PlayerStatus.ACTIVE
        self.answers = {}

    def add_points(self, round_number: int, points: int):
        self.score += points
        self.round_scores[round_number] = self.round_scores.get(round_number, 0) + points

    def to_public(self) -> Dict[str, Any]:
        """Safe representation for lobby broadcasts, without answers."""
        return {
            "name": self.name,
            "roll_number": self.roll_number,
            "score": self.score,
            "status": self.status.value,
        }


class JoinRequest(BaseModel):
    name: str
    roll_number: str

    @field_validator('name', mode='before')
    @classmethod
    def validate_name(cls, v: Any) -> str:
        v = _clean_text(v) if isinstance(v, str) else ""
        if not v:
            raise ValueError('Full Name is required')
        if len(v) > config.MAX_NAME_LENGTH:
            raise ValueError(f'Name must be 1-{config.MAX_NAME_LENGTH} characters')
        return v

    @field_validator('roll_number', mode='before')
    @classmethod
    def validate_roll_number(cls, v: Any) -> str:
        v = v.strip().upper() if isinstance(v, str) else ""
        if not v:
            raise ValueError('Roll Number is required')
        if len(v) > config.MAX_ROLL_NUMBER_LENGTH or not ROLL_NUMBER_PATTERN.match(v):
            raise ValueError('Invalid Roll Number format')
        return v
