import logging
from datetime import datetime, timezone
from typing import Callable, Optional, final

from afkbot.actions import ACTIONS
from afkbot.core import SessionHandle

logger = logging.getLogger(__name__)


@final
class ScheduledTask:
    """A cancellable chain of loop.call_later callbacks.

    Returned by schedule_repeating(). At most one timer of the chain is
    pending at any time; cancel() drops it and stops the chain for good.
    """

    fire_count: int = 0

    def __init__(self, loop, next_delay: Callable[[], float], callback: Callable[[], None]) -> None:
        self.loop = loop
        self.next_delay = next_delay
        self.callback = callback
        self.__handle__ = None
        self.__cancelled__ = False

    @property
    def cancelled(self) -> bool:
        return self.__cancelled__

    def cancel(self) -> None:
        self.__cancelled__ = True
        if self.__handle__ is not None:
            self.__handle__.cancel()
            self.__handle__ = None

    def __schedule__(self) -> None:
        self.__handle__ = self.loop.call_later(self.next_delay(), self.__fire__)

    def __fire__(self) -> None:
        if self.__cancelled__:
            return

        # schedule the next firing first so an error in the callback never breaks the chain
        self.__schedule__()
        self.fire_count += 1
        self.callback()


def schedule_repeating(loop, next_delay: Callable[[], float], callback: Callable[[], None]) -> ScheduledTask:
    """Runs callback repeatedly, waiting next_delay() seconds before every firing.

    The delay is drawn again before each firing, so a jittered delay function
    gives per-tick jitter.

    Args:
        loop: anything exposing call_later(delay, callback), normally the asyncio event loop
        next_delay: returns the delay in seconds until the next firing
        callback: invoked synchronously on the loop

    Returns:
        ScheduledTask: the handle used to cancel the repetition
    """
    task = ScheduledTask(loop, next_delay, callback)
    task.__schedule__()
    return task


class ActionScheduler:
    """Performs one random action every 8-12 seconds against a spawned session.

    The supervisor drives it with start(session) on spawn and stop() on end.
    Actions may overlap: a multi-second ascent is still running when the next
    tick fires, and no attempt is made to serialise them.

    Args:
        context: the AgentContext providing the loop and the random generator
        actions: the catalog to pick from; each entry is called as action(session, rng)
    """

    MIN_INTERVAL: float = 8.0
    MAX_INTERVAL: float = 12.0

    session: Optional[SessionHandle] = None
    ticks: int = 0

    def __init__(self, context, actions=ACTIONS) -> None:
        self.context = context
        self.actions = tuple(actions)
        self.__task__: Optional[ScheduledTask] = None

    @property
    def running(self) -> bool:
        return self.__task__ is not None and not self.__task__.cancelled

    def next_delay(self) -> float:
        """Returns a delay uniformly drawn from [MIN_INTERVAL, MAX_INTERVAL)."""
        return self.MIN_INTERVAL + self.context.rng.random() * (self.MAX_INTERVAL - self.MIN_INTERVAL)

    def start(self, session: SessionHandle) -> None:
        self.stop()
        self.session = session
        self.__task__ = schedule_repeating(self.context.loop, self.next_delay, self.tick)
        logger.debug("[BOT] Action loop started")

    def stop(self) -> None:
        if self.__task__ is not None:
            self.__task__.cancel()
            self.__task__ = None
            logger.debug("[BOT] Action loop stopped after %d ticks", self.ticks)
        self.session = None

    def tick(self) -> None:
        session = self.session
        if session is None or session.ended or session.position is None:
            return  # not ready yet

        self.ticks += 1
        action = self.actions[self.context.rng.randrange(len(self.actions))]
        try:
            action(session, self.context.rng)
        except Exception:
            logger.exception("[BOT] Action %s failed", action.__name__)


def schedule_heartbeat(loop, interval: float = 60.0) -> ScheduledTask:
    """Logs a timestamp every interval seconds for as long as the process lives."""
    def beat():
        logger.info("[KEEP-ALIVE] %s", datetime.now(timezone.utc).isoformat())

    return schedule_repeating(loop, lambda: interval, beat)
