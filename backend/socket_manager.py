from fastapi import WebSocket, WebSocketDisconnect
from typing import Any, Dict, List, Optional
import json
import time
import asyncio
import logging

import config
from errors import GameError
from game_session import GameSession
from question_bank import QuestionBank

logger = logging.getLogger(__name__)


class Connection:
    """One client socket with its own outbound queue.

    The session only ever enqueues; a writer task drains the queue with a
    send timeout, so a slow client falls behind on its own and is dropped
    once the queue fills up.
    """

    def __init__(self, client_id: str, websocket: WebSocket):
        self.client_id = client_id
        self.websocket = websocket
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=config.OUTBOUND_QUEUE_SIZE)
        self.msg_timestamps: List[float] = []  # WS rate limiting
        self.closed = False
        self._writer_task: Optional[asyncio.Task] = None

    def start(self):
        self._writer_task = asyncio.create_task(self._writer())

    def push(self, message: dict) -> bool:
        if self.closed:
            return False
        try:
            self.queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            logger.warning("Outbound queue full for client %s, dropping connection", self.client_id)
            self._drop()
            return False

    def allow_message(self) -> bool:
        now = time.time()
        self.msg_timestamps[:] = [t for t in self.msg_timestamps if now - t < 1.0]
        if len(self.msg_timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
            return False
        self.msg_timestamps.append(now)
        return True

    async def _writer(self):
        try:
            while True:
                message = await self.queue.get()
                await asyncio.wait_for(self.websocket.send_json(message), timeout=config.SEND_TIMEOUT)
        except asyncio.CancelledError:
            pass
        except asyncio.TimeoutError:
            logger.warning("Client %s send timeout - dropping connection", self.client_id)
            self._drop()
        except Exception:
            logger.info("Client %s stopped receiving", self.client_id)
            self._drop()

    def _drop(self):
        if self.closed:
            return
        self.closed = True
        asyncio.create_task(self._close_socket())

    async def _close_socket(self):
        try:
            await self.websocket.close(code=1011)
        except Exception:
            pass

    async def close(self):
        self.closed = True
        if self._writer_task and self._writer_task is not asyncio.current_task():
            self._writer_task.cancel()


class SocketManager:
    """WebSocket gateway: turns client messages into session calls and
    session events into client messages."""

    def __init__(self, question_bank: Optional[QuestionBank] = None):
        self.connections: Dict[str, Connection] = {}
        self.allowed_origins: List[str] = []
        self.session = GameSession(question_bank or QuestionBank(path=config.QUESTIONS_FILE), self)

    def reset(self, question_bank: Optional[QuestionBank] = None, **session_options):
        """Replace the game session, e.g. to load another question bank."""
        self.session.shutdown()
        bank = question_bank or self.session.bank
        self.session = GameSession(bank, self, **session_options)
        logger.info("Game session reset")

    def shutdown(self):
        self.session.shutdown()

    # --- EventSink ---

    def broadcast(self, event: str, data: dict):
        message = {"type": event, **data}
        for conn in list(self.connections.values()):
            conn.push(message)

    def send(self, connection_id: str, event: str, data: dict):
        conn = self.connections.get(connection_id)
        if conn:
            conn.push({"type": event, **data})

    def send_admins(self, event: str, data: dict):
        message = {"type": event, **data}
        for client_id in list(self.session.admins):
            conn = self.connections.get(client_id)
            if conn:
                conn.push(message)

    # --- Connection loop ---

    async def connect(self, websocket: WebSocket, client_id: str):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        if client_id in self.connections:
            await websocket.send_json({"type": "error", "reason": "Client id already connected"})
            await websocket.close()
            return

        conn = Connection(client_id, websocket)
        self.connections[client_id] = conn
        conn.start()
        conn.push({"type": "connected", "client_id": client_id, "state": self.session.get_state()})
        logger.info("Client %s connected", client_id)

        try:
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    conn.push({"type": "error", "reason": "Message too large"})
                    continue

                if not conn.allow_message():
                    conn.push({"type": "error", "reason": "Too many messages"})
                    continue

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from client %s: %s", client_id, data[:100])
                    conn.push({"type": "error", "reason": "Invalid message format"})
                    continue
                if not isinstance(message, dict):
                    conn.push({"type": "error", "reason": "Invalid message format"})
                    continue

                await self.handle_message(client_id, message)
        except WebSocketDisconnect:
            logger.info("Client %s disconnected", client_id)
        except Exception:
            logger.exception("WebSocket error for client %s", client_id)
        finally:
            if self.connections.get(client_id) is conn:
                del self.connections[client_id]
            await conn.close()
            await self.session.disconnect(client_id)

    async def handle_message(self, client_id: str, message: dict):
        msg_type = message.get("type")
        session = self.session
        try:
            if msg_type == "admin_auth":
                if session.authenticate_admin(client_id, message.get("pin", "")):
                    self.send(client_id, "admin_auth_result", {"success": True})
                else:
                    self.send(client_id, "admin_auth_result", {"success": False, "message": "Invalid PIN"})

            elif msg_type == "load_questions":
                session.require_admin(client_id)
                self.send(client_id, "questions_loaded", session.load_questions())

            elif msg_type == "start_round":
                session.require_admin(client_id)
                await session.start_round(_as_int(message.get("round")))

            elif msg_type == "advance_question":
                session.require_admin(client_id)
                await session.advance_question()

            elif msg_type == "force_stop":
                session.require_admin(client_id)
                await session.force_stop()
                self.send(client_id, "state", session.get_state(client_id))

            elif msg_type == "join":
                await session.join(client_id, message.get("name"), message.get("roll_number"))

            elif msg_type == "submit_answer":
                await session.submit_answer(client_id, message.get("question_id"), message.get("payload"))

            elif msg_type == "get_state":
                self.send(client_id, "state", session.get_state(client_id))

            else:
                self.send(client_id, "error", {"reason": "Unknown message type"})

        except GameError as e:
            logger.info("Rejected %s from %s: %s", msg_type, client_id, e.message)
            self.send(client_id, "error", {"reason": e.message, "kind": type(e).__name__})


def _as_int(value: Any) -> Any:
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


socket_manager = SocketManager()
