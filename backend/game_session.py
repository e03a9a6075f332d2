from typing import Any, Dict, List, Optional, Protocol
import asyncio
import hmac
import itertools
import logging
import math
import time

import config
from errors import AuthorizationError, SequencingError
from leaderboard import build_leaderboard
from models import AnswerSubmission, Player, PlayerStatus, Question, SessionStatus
from question_bank import QuestionBank
from question_timer import QuestionTimer
from roster import Roster
from scoring_engine import apply_results, grade_question, question_key

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Outbound side of the gateway. Calls must not block."""

    def broadcast(self, event: str, data: dict) -> None: ...

    def send(self, connection_id: str, event: str, data: dict) -> None: ...

    def send_admins(self, event: str, data: dict) -> None: ...


class GameSession:
    """The one game of this process.

    Every transition runs under ``self.lock`` and none of them awaits while
    holding it (sink calls only enqueue), so each transition is atomic with
    respect to timers, answers and admin commands. A question is graded by
    whoever flips ``question_open`` to False first; the other trigger finds
    it closed and does nothing.
    """

    def __init__(self, question_bank: QuestionBank, sink: EventSink,
                 tick_seconds: float = config.TICK_SECONDS,
                 reveal_delay: float = config.REVEAL_DELAY,
                 next_question_delay: float = config.NEXT_QUESTION_DELAY,
                 final_round: int = config.FINAL_ROUND,
                 admin_pin: str = config.ADMIN_PIN,
                 clock=time.time):
        self.bank = question_bank
        self.sink = sink
        self.reveal_delay = reveal_delay
        self.next_question_delay = next_question_delay
        self.final_round = final_round
        self.admin_pin = admin_pin
        self.clock = clock

        self.roster = Roster()
        self.timer = QuestionTimer(tick_seconds)
        self.lock = asyncio.Lock()
        self.admins: set = set()  # connection ids holding an admin grant

        self.status = SessionStatus.LOBBY
        self.current_round = 0
        self.round_questions: List[Question] = []
        self.current_question_index = -1
        self.question_open = False
        self.completed_rounds: set = set()
        self.last_leaderboard: List[dict] = []
        self._revealed = False
        self._sequence = itertools.count(1)

    # --- Admin capability ---

    def authenticate_admin(self, connection_id: str, pin: str) -> bool:
        if pin and hmac.compare_digest(str(pin), self.admin_pin):
            self.admins.add(connection_id)
            logger.info("Admin granted to connection %s", connection_id)
            return True
        logger.warning("Rejected admin PIN from connection %s", connection_id)
        return False

    def is_admin(self, connection_id: str) -> bool:
        return connection_id in self.admins

    def require_admin(self, connection_id: str):
        if connection_id not in self.admins:
            raise AuthorizationError("Unauthorized. Please authenticate as Admin.")

    # --- Derived state ---

    @property
    def time_remaining(self) -> int:
        return self.timer.remaining if self.question_open else 0

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_question_index < len(self.round_questions):
            return self.round_questions[self.current_question_index]
        return None

    @property
    def current_key(self) -> str:
        return question_key(self.current_round, self.current_question_index)

    def leaderboard(self, limit: Optional[int] = None) -> List[dict]:
        return build_leaderboard(self.roster.all_players(), limit=limit)

    # --- Rounds ---

    async def start_round(self, round_number: Any) -> Dict[str, Any]:
        async with self.lock:
            if isinstance(round_number, bool) or not isinstance(round_number, int) \
                    or not 1 <= round_number <= self.final_round:
                raise SequencingError(f"Round must be between 1 and {self.final_round}")
            if self.status == SessionStatus.PLAYING:
                raise SequencingError(f"Round {self.current_round} is still in progress")
            if round_number > 1:
                if round_number - 1 not in self.completed_rounds:
                    raise SequencingError(
                        f"Cannot start Round {round_number} until Round {round_number - 1} is completed!"
                    )
                if round_number in self.completed_rounds:
                    raise SequencingError(f"Round {round_number} is already completed")

            questions = self.bank.questions_for_round(round_number)
            if not questions:
                raise SequencingError(f"No questions found for Round {round_number}")

            if round_number == 1:
                self.roster.reset_for_new_game()
                self.completed_rounds.clear()
                self.last_leaderboard = []
            else:
                self._discard_round_progress(round_number)

            self.current_round = round_number
            self.round_questions = questions
            self.status = SessionStatus.PLAYING
            logger.info("Round %d started with %d questions", round_number, len(questions))
            self.sink.broadcast("round_started", {
                "round": round_number,
                "total_questions": len(questions),
            })
            self._open_question(0)
            return {"round": round_number, "total_questions": len(questions)}

    def _discard_round_progress(self, round_number: int):
        """Undo points and answers left over from an interrupted attempt at this round."""
        prefix = f"{round_number}_"
        for player in self.roster.all_players():
            leftover = player.round_scores.get(round_number, 0)
            player.score -= leftover
            player.round_scores[round_number] = 0
            player.answers = {k: v for k, v in player.answers.items() if not k.startswith(prefix)}

    async def advance_question(self) -> Dict[str, Any]:
        """Admin "next": grade the open question, or skip the post-question pause."""
        async with self.lock:
            if self.status != SessionStatus.PLAYING:
                raise SequencingError("No question is in progress")
            if self.question_open:
                key = self.current_key
                self._close_question()
                return {"graded": key}
            self._proceed()
            return {"skipped_to": self.current_key if self.status == SessionStatus.PLAYING else None}

    async def force_stop(self) -> bool:
        """Cancel everything and go back to the lobby. Returns False if already there."""
        async with self.lock:
            self.timer.cancel()
            self.question_open = False
            if self.status == SessionStatus.LOBBY:
                return False
            logger.info("Game force-stopped in round %d (was %s)", self.current_round, self.status.value)
            self.status = SessionStatus.LOBBY
            self.sink.broadcast("game_stopped", {})
            return True

    # --- Question lifecycle ---

    def _open_question(self, index: int):
        question = self.round_questions[index]
        total = len(self.round_questions)
        self.current_question_index = index
        self.question_open = True
        self._revealed = False
        self.sink.broadcast("question_progress", {"index": index, "total": total})
        self.sink.broadcast("new_question", question.public_view(index, total, self.current_round))
        self.timer.start_countdown(question.timer, self._on_tick, self._on_expire)

    async def _on_tick(self, token: int, remaining: int):
        if self.timer.is_current(token):
            self.sink.broadcast("timer_tick", {"remaining": remaining})

    async def _on_expire(self, token: int):
        async with self.lock:
            if not self.timer.is_current(token) or not self.question_open:
                return
            self._close_question()

    def _close_question(self):
        # Caller holds the lock and has checked question_open.
        self.timer.cancel()
        self.question_open = False
        key = self.current_key
        question = self.round_questions[self.current_question_index]

        self.sink.broadcast("time_up", {})
        results = grade_question(question, self.current_round, key, self.roster.all_players())
        apply_results(results, self.roster.players, self.current_round)
        for result in results:
            player = self.roster.get(result.roll_number)
            if player is not None and player.connection_id is not None:
                self.sink.send(player.connection_id, "answer_result", result.to_event())

        self.last_leaderboard = self.leaderboard()
        logger.info("Graded question %s: %d results", key, len(results))
        self.timer.schedule(self.reveal_delay, self._on_reveal)

    async def _on_reveal(self, token: int):
        async with self.lock:
            if not self.timer.is_current(token) or self.status != SessionStatus.PLAYING:
                return
            self._reveal()
            self.timer.schedule(self.next_question_delay, self._on_next)

    async def _on_next(self, token: int):
        async with self.lock:
            if not self.timer.is_current(token) or self.status != SessionStatus.PLAYING:
                return
            self._proceed()

    def _reveal(self):
        self._revealed = True
        self.sink.broadcast("leaderboard_update", {
            "leaderboard": self.leaderboard(limit=config.LEADERBOARD_BROADCAST_SIZE),
            "total_players": len(self.roster),
        })
        self.sink.send_admins("leaderboard_update", {
            "leaderboard": self.last_leaderboard,
            "total_players": len(self.roster),
            "full": True,
        })

    def _proceed(self):
        self.timer.cancel()
        if not self._revealed:
            self._reveal()
        next_index = self.current_question_index + 1
        if next_index < len(self.round_questions):
            self._open_question(next_index)
        else:
            self._complete_round()

    def _complete_round(self):
        round_number = self.current_round
        self.completed_rounds.add(round_number)
        cutoff = math.ceil(len(self.round_questions) * config.QUALIFY_FRACTION)

        if round_number >= self.final_round:
            self.status = SessionStatus.GAME_FINISHED
            self.last_leaderboard = self.leaderboard()
            logger.info("Game finished after round %d", round_number)
            self.sink.broadcast("game_finished", {"leaderboard": self.last_leaderboard})
            return

        demoted = 0
        for player in self.roster.active_players():
            if player.round_scores.get(round_number, 0) < cutoff:
                player.demote(PlayerStatus.SPECTATOR)
                demoted += 1
        self.status = SessionStatus.ROUND_FINISHED
        self.last_leaderboard = self.leaderboard()
        logger.info("Round %d finished: cutoff %d, %d players demoted", round_number, cutoff, demoted)

        self.sink.broadcast("round_finished", {
            "round": round_number,
            "cutoff": cutoff,
            "leaderboard": self.leaderboard(limit=config.LEADERBOARD_BROADCAST_SIZE),
        })
        for player in self.roster.live_players():
            qualified = player.is_active
            self.sink.send(player.connection_id, "round_status", {
                "qualified": qualified,
                "cutoff": cutoff,
                "round_score": player.round_scores.get(round_number, 0),
                "message": (f"Qualified for Round {round_number + 1}!" if qualified
                            else f"Eliminated (Cutoff: {cutoff}). Spectating..."),
            })

    # --- Participants ---

    async def join(self, connection_id: str, name: Any, roll_number: Any) -> Player:
        async with self.lock:
            player, rebound = self.roster.join(
                connection_id, name, roll_number, late_joiner=self.current_round >= 1,
            )
            self.sink.send(connection_id, "joined", {
                "success": True,
                "msg": "Reconnected" if rebound else "Joined successfully",
                "name": player.name,
                "roll_number": player.roll_number,
                "score": player.score,
                "status": player.status.value,
                "round": self.current_round,
            })
            self._broadcast_lobby()
            question = self.current_question
            if self.status == SessionStatus.PLAYING and self.question_open and question:
                view = question.public_view(self.current_question_index,
                                            len(self.round_questions), self.current_round)
                view["time_remaining"] = self.time_remaining
                view["answered"] = self.current_key in player.answers
                self.sink.send(connection_id, "new_question", view)
            return player

    async def disconnect(self, connection_id: str) -> Optional[Player]:
        async with self.lock:
            if connection_id in self.admins:
                self.admins.discard(connection_id)
                logger.info("Admin grant revoked for connection %s", connection_id)
            player = self.roster.disconnect(connection_id)
            if player is not None:
                self._broadcast_lobby()
            return player

    async def submit_answer(self, connection_id: str, question_id: Any, payload: Any) -> AnswerSubmission:
        async with self.lock:
            player = self.roster.by_connection(connection_id)
            if player is None:
                raise SequencingError("Join the game before answering")
            question = self.current_question
            if self.status != SessionStatus.PLAYING or not self.question_open or question is None:
                raise SequencingError("No question is open for answers")
            if not player.is_active:
                raise SequencingError("Spectators cannot answer")
            if question_id is None or str(question_id) != question.id:
                raise SequencingError("Answer is for a different question")
            key = self.current_key
            if key in player.answers:
                raise SequencingError("Answer already submitted")

            submission = AnswerSubmission(
                question_key=key,
                question_id=question.id,
                payload=payload,
                submitted_at=self.clock(),
                sequence=next(self._sequence),
                time_remaining=self.timer.remaining,
            )
            player.answers[key] = submission
            self.sink.send(connection_id, "answer_accepted", {"question_id": question.id})
            self.sink.send_admins("answer_count", {
                "answered": sum(1 for p in self.roster.active_players() if key in p.answers),
                "total": len(self.roster.active_players()),
            })
            return submission

    def _broadcast_lobby(self):
        self.sink.broadcast("lobby_update", {"players": self.roster.public_roster()})

    # --- Queries ---

    def load_questions(self) -> Dict[str, Any]:
        questions = self.bank.load()
        return {"total": len(questions), "per_round": self.bank.summary()}

    def get_state(self, connection_id: Optional[str] = None) -> Dict[str, Any]:
        state: Dict[str, Any] = {
            "status": self.status.value,
            "current_round": self.current_round,
            "current_question_index": self.current_question_index,
            "total_questions": len(self.round_questions),
            "question_open": self.question_open,
            "time_remaining": self.time_remaining,
            "completed_rounds": sorted(self.completed_rounds),
            "players": self.roster.public_roster(),
        }
        if connection_id is not None and self.is_admin(connection_id):
            state["leaderboard"] = self.leaderboard()
            state["total_all_questions"] = len(self.bank)
        elif connection_id is not None:
            player = self.roster.by_connection(connection_id)
            if player is not None:
                state["you"] = player.to_public()
                state["you"]["round_scores"] = dict(player.round_scores)
        return state

    def shutdown(self):
        self.timer.cancel()
        self.question_open = False
