from typing import Dict, List, Optional, Tuple
import logging

from pydantic import ValidationError as PydanticValidationError

import config
from errors import DuplicateIdentityError, ValidationError
from models import JoinRequest, Player, PlayerStatus

logger = logging.getLogger(__name__)


class Roster:
    """Players indexed two ways: roll number -> record, connection -> roll number.

    A record outlives its connection; disconnecting only drops the
    connection binding so the same roll number can later be rebound.
    """

    def __init__(self):
        self.players: Dict[str, Player] = {}  # roll_number -> player
        self.connections: Dict[str, str] = {}  # connection_id -> roll_number

    def join(self, connection_id: str, name: str, roll_number: str,
             late_joiner: bool = False) -> Tuple[Player, bool]:
        """Bind a connection to an identity. Returns (player, rebound).

        ``late_joiner`` admits brand-new identities as spectators.
        Raises ValidationError / DuplicateIdentityError without mutating.
        """
        try:
            request = JoinRequest(name=name, roll_number=roll_number)
        except PydanticValidationError as e:
            raise ValidationError(e.errors()[0]["msg"].removeprefix("Value error, "))

        bound = self.connections.get(connection_id)
        if bound is not None and bound != request.roll_number:
            raise ValidationError("This connection has already joined as another player")

        existing = self.players.get(request.roll_number)
        if existing is not None:
            if existing.is_connected and existing.connection_id != connection_id:
                raise DuplicateIdentityError("Roll Number in use.")
            return self._rebind(existing, connection_id, request.name), True

        if len(self.players) >= config.MAX_PLAYERS:
            raise ValidationError("Game is full")

        player = Player(
            name=request.name,
            roll_number=request.roll_number,
            connection_id=connection_id,
            status=PlayerStatus.SPECTATOR if late_joiner else PlayerStatus.ACTIVE,
        )
        self.players[player.roll_number] = player
        self.connections[connection_id] = player.roll_number
        logger.info("Player '%s' (%s) joined as %s", player.name, player.roll_number, player.status.value)
        return player, False

    def _rebind(self, player: Player, connection_id: str, name: str) -> Player:
        # Score, round scores, status and answers live on the record itself,
        # so moving the connection binding is the whole transfer.
        if player.connection_id is not None:
            self.connections.pop(player.connection_id, None)
        player.connection_id = connection_id
        player.name = name
        self.connections[connection_id] = player.roll_number
        logger.info("Player '%s' (%s) reconnected with score %d", player.name, player.roll_number, player.score)
        return player

    def disconnect(self, connection_id: str) -> Optional[Player]:
        roll_number = self.connections.pop(connection_id, None)
        if roll_number is None:
            return None
        player = self.players.get(roll_number)
        if player is not None and player.connection_id == connection_id:
            player.connection_id = None
            logger.info("Player '%s' (%s) disconnected (data preserved)", player.name, roll_number)
        return player

    def by_connection(self, connection_id: str) -> Optional[Player]:
        roll_number = self.connections.get(connection_id)
        return self.players.get(roll_number) if roll_number else None

    def get(self, roll_number: str) -> Optional[Player]:
        return self.players.get(roll_number)

    def live_players(self) -> List[Player]:
        return [self.players[r] for r in self.connections.values() if r in self.players]

    def active_players(self) -> List[Player]:
        return [p for p in self.players.values() if p.is_active]

    def all_players(self) -> List[Player]:
        return list(self.players.values())

    def reset_for_new_game(self):
        """Drop stale records from the last game and zero everyone else."""
        stale = [r for r, p in self.players.items() if not p.is_connected]
        for roll_number in stale:
            del self.players[roll_number]
        for player in self.players.values():
            player.reset_for_new_game()

    def public_roster(self) -> List[dict]:
        return [p.to_public() for p in self.live_players()]

    def __len__(self) -> int:
        return len(self.players)
