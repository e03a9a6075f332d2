"""Grading of a closed question.

Ruleset (one canonical model, additive round modifiers):

- correct answer: +1
- round 1, speed bonus: +1 more when answered within the first 5 seconds
- round 2, first blood: +2 for the single earliest correct submission
- round 3, negative marking: -2 for a wrong submission, 0 for no submission

Matching questions are all-or-nothing. Only active players are graded.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import config
from models import AnswerSubmission, Player, Question, QuestionType

SPEED_BONUS_ROUND = 1
FIRST_BLOOD_ROUND = 2
NEGATIVE_MARKING_ROUND = 3

ROUND_MODIFIERS = {
    SPEED_BONUS_ROUND: "speed_bonus",
    FIRST_BLOOD_ROUND: "first_blood",
    NEGATIVE_MARKING_ROUND: "negative_marking",
}


@dataclass
class GradeResult:
    roll_number: str
    answered: bool
    correct: bool
    points: int
    submitted_at: Optional[float] = None
    sequence: Optional[int] = None
    speed_bonus: bool = False
    first_blood: bool = False
    penalty: bool = False
    total_score: int = 0

    def to_event(self) -> Dict[str, Any]:
        """Per-player result; carries no answer key and no other player's data."""
        return {
            "correct": self.correct,
            "points": self.points,
            "total_score": self.total_score,
            "flags": {
                "speed_bonus": self.speed_bonus,
                "first_blood": self.first_blood,
                "penalty": self.penalty,
            },
        }


def question_key(round_number: int, index: int) -> str:
    return f"{round_number}_{index}"


def _as_index(payload: Any) -> Optional[int]:
    if isinstance(payload, bool):
        return None
    if isinstance(payload, int):
        return payload
    if isinstance(payload, float) and payload.is_integer():
        return int(payload)
    if isinstance(payload, str):
        try:
            return int(payload.strip())
        except ValueError:
            return None
    return None


def is_correct(question: Question, payload: Any) -> bool:
    if question.type == QuestionType.MATCHING:
        if not isinstance(payload, dict) or not question.match_map:
            return False
        submitted = {str(k).strip(): str(v).strip() for k, v in payload.items()}
        return submitted == question.match_map
    index = _as_index(payload)
    return index is not None and index == question.correct_answer


def grade_submission(question: Question, round_number: int,
                     player: Player, submission: Optional[AnswerSubmission]) -> GradeResult:
    if submission is None:
        return GradeResult(roll_number=player.roll_number, answered=False, correct=False, points=0)

    result = GradeResult(
        roll_number=player.roll_number,
        answered=True,
        correct=is_correct(question, submission.payload),
        points=0,
        submitted_at=submission.submitted_at,
        sequence=submission.sequence,
    )
    if result.correct:
        result.points += config.BASE_POINTS
        if round_number == SPEED_BONUS_ROUND:
            elapsed = question.timer - submission.time_remaining
            if elapsed <= config.SPEED_BONUS_WINDOW:
                result.points += config.SPEED_BONUS_POINTS
                result.speed_bonus = True
    elif round_number == NEGATIVE_MARKING_ROUND:
        result.points -= config.WRONG_ANSWER_PENALTY
        result.penalty = True
    return result


def grade_question(question: Question, round_number: int, key: str,
                   players: Iterable[Player]) -> List[GradeResult]:
    """Grade every active player's stored submission for ``key``.

    Pure: players are not modified, see ``apply_results``.
    """
    results = [
        grade_submission(question, round_number, player, player.answers.get(key))
        for player in players
        if player.is_active
    ]

    if round_number == FIRST_BLOOD_ROUND:
        correct = [r for r in results if r.correct]
        if correct:
            winner = min(correct, key=lambda r: (r.submitted_at, r.sequence))
            winner.points += config.FIRST_BLOOD_BONUS
            winner.first_blood = True

    return results


def apply_results(results: List[GradeResult], players: Dict[str, Player], round_number: int):
    for result in results:
        player = players.get(result.roll_number)
        if player is None:
            continue
        player.add_points(round_number, result.points)
        result.total_score = player.score
