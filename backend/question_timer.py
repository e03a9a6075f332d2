from typing import Awaitable, Callable, Optional
import asyncio
import logging

logger = logging.getLogger(__name__)

TickCallback = Callable[[int, int], Awaitable[None]]  # (token, remaining)
TokenCallback = Callable[[int], Awaitable[None]]  # (token)


class QuestionTimer:
    """Holds the single scheduled event of a game: a countdown or a delay.

    Scheduling anything cancels what was there and bumps ``token``. Callbacks
    receive the token they were scheduled with; the owner compares it with
    ``is_current`` under its lock and drops stale ones, so a callback that
    lost a race with ``cancel`` can never act.
    """

    def __init__(self, tick_seconds: float = 1.0):
        self.tick_seconds = tick_seconds
        self.token = 0
        self.remaining = 0
        self.kind: Optional[str] = None  # "countdown" | "delay"
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_current(self, token: int) -> bool:
        return token == self.token

    def cancel(self):
        """Invalidate the current token and stop the pending task, if any.

        Safe to call from inside the timer's own callback: the running task
        is detached instead of cancelled so it can finish the callback.
        """
        self.token += 1
        self.kind = None
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def start_countdown(self, duration: int, on_tick: TickCallback,
                        on_expire: TokenCallback) -> int:
        self.cancel()
        self.remaining = duration
        self.kind = "countdown"
        token = self.token
        self._task = asyncio.create_task(self._countdown(token, duration, on_tick, on_expire))
        return token

    def schedule(self, delay: float, callback: TokenCallback) -> int:
        self.cancel()
        self.kind = "delay"
        token = self.token
        self._task = asyncio.create_task(self._delay(token, delay, callback))
        return token

    async def _countdown(self, token: int, duration: int, on_tick: TickCallback,
                         on_expire: TokenCallback):
        try:
            for remaining in range(duration, -1, -1):
                self.remaining = remaining
                await on_tick(token, remaining)
                if remaining > 0:
                    await asyncio.sleep(self.tick_seconds)
            await on_expire(token)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Countdown callback failed")

    async def _delay(self, token: int, delay: float, callback: TokenCallback):
        try:
            await asyncio.sleep(delay)
            await callback(token)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Scheduled callback failed")
