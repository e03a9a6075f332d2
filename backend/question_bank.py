import json
import logging
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

import config
from models import Question

logger = logging.getLogger(__name__)


def parse_questions(raw: Iterable) -> List[Question]:
    """Validate raw question dicts, dropping the ones that don't pass."""
    questions = []
    seen_ids = set()
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            logger.warning("Skipping question #%d: not an object", i)
            continue
        try:
            question = Question.model_validate(item)
        except PydanticValidationError as e:
            logger.warning("Skipping question #%d: %s", i, e.errors()[0].get("msg", "invalid"))
            continue
        if question.id in seen_ids:
            logger.warning("Skipping question #%d: duplicate id %s", i, question.id)
            continue
        seen_ids.add(question.id)
        questions.append(question)
    return questions


class QuestionBank:
    """Read-only question source, grouped by round level.

    With a ``path`` the JSON file is re-read on every ``questions_for_round``
    call, so edits to the bank are picked up at the next round start.
    """

    def __init__(self, path: Optional[str] = None, questions: Optional[Iterable] = None):
        self.path = path
        self._questions: List[Question] = parse_questions(questions or [])

    def load(self) -> List[Question]:
        if self.path is None:
            return list(self._questions)
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.warning("Question file not found: %s", self.path)
            data = []
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Could not read question file %s: %s", self.path, e)
            data = []
        if isinstance(data, dict):
            data = data.get("questions", [])
        if not isinstance(data, list):
            logger.error("Question file %s must hold a list of questions", self.path)
            data = []
        self._questions = parse_questions(data)
        logger.info("Loaded %d questions from %s", len(self._questions), self.path)
        return list(self._questions)

    def questions_for_round(self, level: int) -> List[Question]:
        return [q for q in self.load() if q.level == level]

    def summary(self) -> Dict[str, int]:
        """Question counts per round, for the admin view."""
        counts = {str(n): 0 for n in range(1, config.FINAL_ROUND + 1)}
        for q in self._questions:
            counts[str(q.level)] = counts.get(str(q.level), 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self._questions)
