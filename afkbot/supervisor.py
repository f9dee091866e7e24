import logging
import random
from typing import Callable, Optional

from afkbot.core import RedisSession, SessionEvent, SessionHandle
from afkbot.scheduling import ActionScheduler

logger = logging.getLogger(__name__)


class AgentContext:
    """Everything one agent owns: its configuration, its event loop, its
    random generator, and the reference to the current session.

    The session reference has a single writer, the ConnectionSupervisor.
    The scheduler and actions only read it.

    Args:
        config (dict): the configuration returned by utils.get_config_from_env()
        loop: the event loop all timers and tasks run on
        rng (random.Random, optional): seed this for reproducible runs. Defaults to a fresh Random().
    """

    config: dict
    session: Optional[SessionHandle] = None

    def __init__(self, config: dict, loop, rng: Optional[random.Random] = None) -> None:
        self.config = config
        self.loop = loop
        self.rng = rng if rng is not None else random.Random()


class ConnectionSupervisor:
    """Keeps exactly one session alive, forever.

    start() creates a session; when that session ends, a new start() is
    scheduled RECONNECT_DELAY seconds later. Kicks and transport errors are
    only logged: the ended signal that follows them is what drives recovery.

    Args:
        context (AgentContext): the agent's owned state
        session_factory (callable, optional): builds a new SessionHandle from the context. Defaults to RedisSession.
        scheduler (ActionScheduler, optional): the action loop to drive. Defaults to an ActionScheduler on the context.
    """

    RECONNECT_DELAY: float = 10.0

    connection_attempts: int = 0

    def __init__(self, context: AgentContext,
                 session_factory: Callable[[AgentContext], SessionHandle] = RedisSession,
                 scheduler: Optional[ActionScheduler] = None) -> None:
        self.context = context
        self.session_factory = session_factory
        self.scheduler = scheduler if scheduler is not None else ActionScheduler(context)
        self.__reconnect_timer__ = None

    @property
    def reconnect_pending(self) -> bool:
        return self.__reconnect_timer__ is not None

    def start(self) -> None:
        """Creates and connects a new session, unless one is still alive."""
        self.__reconnect_timer__ = None

        current = self.context.session
        if current is not None and not current.ended:
            logger.warning("[BOT] Session still active, not starting another")
            return

        config = self.context.config
        self.connection_attempts += 1
        logger.info("[BOT] Connecting to %s:%s as %s (attempt %d)",
                    config['MC_HOST'], config['MC_PORT'], config['MC_USERNAME'],
                    self.connection_attempts)

        try:
            session = self.session_factory(self.context)
        except Exception:
            logger.exception("[BOT] Could not create session")
            self.context.session = None
            self.__schedule_reconnect__()
            return

        self.context.session = session
        session.once(SessionEvent.SPAWNED, lambda: self.__on_spawned__(session))
        session.on(SessionEvent.FAULTED, lambda reason: logger.warning("[BOT] Kicked: %s", reason))
        session.on(SessionEvent.ERROR, lambda error: logger.error("[BOT] Error: %s", error))
        session.once(SessionEvent.ENDED, lambda reason: self.__on_ended__(session, reason))

        try:
            session.connect()
        except Exception:
            logger.exception("[BOT] Could not connect session")
            self.__on_ended__(session, 'connect failed')

    def __on_spawned__(self, session: SessionHandle) -> None:
        logger.info("[BOT] Spawned in world")
        session.set_movements(can_dig=False)
        self.scheduler.start(session)

    def __on_ended__(self, session: SessionHandle, reason: Optional[str]) -> None:
        if self.scheduler.session is session:
            self.scheduler.stop()
        if self.context.session is session:
            self.context.session = None

        logger.info("[BOT] Disconnected (%s), reconnecting in %g s", reason, self.RECONNECT_DELAY)
        self.__schedule_reconnect__()

    def __schedule_reconnect__(self) -> None:
        if self.__reconnect_timer__ is not None:
            return
        self.__reconnect_timer__ = self.context.loop.call_later(self.RECONNECT_DELAY, self.start)
