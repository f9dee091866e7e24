import asyncio
import base64
import hashlib
import inspect
import json
import logging
import math
import re

import redis
import redis.asyncio

from abc import ABCMeta, abstractmethod
from enum import Enum
from typing import Callable, NamedTuple, Optional, final

logger = logging.getLogger(__name__)


class Vec3(NamedTuple):
    """A position in the world."""
    x: float
    y: float
    z: float

    def offset(self, dx: float, dy: float, dz: float) -> 'Vec3':
        """Returns a new position translated by the given deltas."""
        return Vec3(self.x + dx, self.y + dy, self.z + dz)

    def floored(self) -> 'Vec3':
        """Returns the block coordinate that contains this position."""
        return Vec3(*(math.floor(c) for c in self))

    @staticmethod
    def from_list(values: list) -> 'Vec3':
        x, y, z = values
        return Vec3(float(x), float(y), float(z))


class GameMode:
    """Server-defined game modes"""
    SURVIVAL: str = 'survival'
    CREATIVE: str = 'creative'
    ADVENTURE: str = 'adventure'
    SPECTATOR: str = 'spectator'


class SessionState(Enum):
    CONNECTING = 'connecting'
    SPAWNED = 'spawned'
    ENDED = 'ended'


class SessionEvent:
    """Lifecycle signals emitted by a SessionHandle"""
    SPAWNED: str = 'spawned'
    """The agent is in the world and has a position. Emitted at most once."""
    FAULTED: str = 'faulted'
    """Protocol-level rejection, e.g. a kick. Informational only."""
    ERROR: str = 'error'
    """Transport fault. Informational only."""
    ENDED: str = 'ended'
    """The connection is gone. Emitted exactly once; the handle is dead afterwards."""


class SessionError(Exception):
    pass


class SessionClosedError(SessionError):
    """Raised when a primitive is used on a handle that has already ended."""


class SessionHandle(metaclass=ABCMeta):
    """An abstract base class for one live connection to the game world.

    A handle is never reused: each (re)connect produces a fresh instance that
    moves CONNECTING -> SPAWNED -> ENDED (or CONNECTING -> ENDED when the
    connection fails before spawn).

    Subclasses implement connect() and the movement/look/chat primitives and
    drive the lifecycle through _mark_spawned() and _mark_ended().

    Args:
        loop: the event loop that timers and listener errors are routed to.
    """

    state: SessionState
    position: Optional[Vec3]
    game_mode: Optional[str]
    end_reason: Optional[str]

    def __init__(self, loop) -> None:
        self.loop = loop
        self.state = SessionState.CONNECTING
        self.position = None
        self.game_mode = None
        self.end_reason = None
        self.__listeners__: dict[str, list[tuple[Callable, bool]]] = {}

    @abstractmethod
    def connect(self) -> None:
        """Starts the asynchronous session lifecycle. Must not block."""
        raise NotImplementedError(
            "connect() must be implemented by the session subclass.")

    @abstractmethod
    def set_movements(self, can_dig: bool) -> None:
        """Configures the movement planner."""

    @abstractmethod
    def set_goal(self, x: int, y: int, z: int) -> None:
        """Asks the movement planner to walk to the given block."""

    @abstractmethod
    def set_control_state(self, control: str, state: bool) -> None:
        """Presses or releases a movement control such as 'jump'."""

    @abstractmethod
    def look(self, yaw: float, pitch: float, force: bool = False) -> None:
        """Turns the agent's head."""

    @abstractmethod
    def chat(self, message: str) -> None:
        """Sends a chat message to the world."""

    @property
    def ended(self) -> bool:
        return self.state is SessionState.ENDED

    @final
    def on(self, event: str, callback: Callable) -> None:
        self.__listeners__.setdefault(event, []).append((callback, False))

    @final
    def once(self, event: str, callback: Callable) -> None:
        self.__listeners__.setdefault(event, []).append((callback, True))

    @final
    def _emit(self, event: str, *args) -> None:
        listeners = self.__listeners__.get(event, [])
        self.__listeners__[event] = [l for l in listeners if not l[1]]

        for callback, _ in listeners:
            try:
                callback(*args)
            except Exception as exc:
                self.loop.call_exception_handler({
                    'message': f'Unhandled error in {event!r} listener',
                    'exception': exc,
                })

    @final
    def _mark_spawned(self, position: Vec3, game_mode: Optional[str] = None) -> None:
        self.position = position
        if game_mode is not None:
            self.game_mode = game_mode

        if self.state is not SessionState.CONNECTING:
            return  # respawn after death, not a new session

        self.state = SessionState.SPAWNED
        self._emit(SessionEvent.SPAWNED)

    @final
    def _mark_ended(self, reason: Optional[str] = None) -> None:
        if self.state is SessionState.ENDED:
            return

        self.state = SessionState.ENDED
        self.end_reason = reason
        self._emit(SessionEvent.ENDED, reason)

    def _ensure_open(self) -> None:
        if self.ended:
            raise SessionClosedError(f'session ended: {self.end_reason}')


@final
class __Command__:
    @classmethod
    def __serialize__(cls, command: str, **args) -> str:
        """Serializes a command for the game client.

        Args:
            command (str): the command name, e.g. 'setGoal'
            **args: command arguments; None values are dropped

        Returns:
            str: json representation of the command suitable to be passed to Redis
        """
        return json.dumps({'command': command,
                           'args': {k: v for k, v in args.items() if v is not None}})


@final
class __SessionChannelList__:
    """A data class to hold the redis channel names for a session
    """
    EVENT: str
    """The game client publishes lifecycle and state events to this channel"""
    COMMAND: str
    """The game client executes commands received on this channel"""

    def __init__(self, session_id: str):
        self.EVENT = f"{session_id}-event"
        self.COMMAND = f"{session_id}-command"


class RedisSession(SessionHandle):
    """A session whose connection is owned by an external game client.

    The client subscribes to the command channel, performs the login and
    pathfinding, and reports back on the event channel. This class only
    translates between those channels and the SessionHandle contract.

    Args:
        context: the AgentContext holding config and the event loop
        redis_connection: an existing redis.asyncio.Redis to use instead of
            creating one from context.config['redisConfig']
    """

    session_id: str
    channel_list: __SessionChannelList__

    def __init__(self, context, redis_connection: Optional[redis.asyncio.Redis] = None) -> None:
        super().__init__(context.loop)
        self.config = context.config
        self.session_id = self.config['BOT_ID_PREFIX'] + '-' + self.__hash_identity__(
            f"{self.config['MC_USERNAME']}@{self.config['MC_HOST']}:{self.config['MC_PORT']}")
        self.channel_list = __SessionChannelList__(self.session_id)
        self.__redis_connection__ = redis_connection
        self.__owns_connection__ = redis_connection is None
        self.__task__: Optional[asyncio.Task] = None
        self.__pending__: set[asyncio.Task] = set()

    def connect(self) -> None:
        self.__task__ = self.loop.create_task(self.__run__())

    def set_movements(self, can_dig: bool) -> None:
        self.__publish__('setMovements', canDig=can_dig)

    def set_goal(self, x: int, y: int, z: int) -> None:
        self.__publish__('setGoal', goal={'type': 'block', 'x': x, 'y': y, 'z': z})

    def set_control_state(self, control: str, state: bool) -> None:
        self.__publish__('setControlState', control=control, state=state)

    def look(self, yaw: float, pitch: float, force: bool = False) -> None:
        self.__publish__('look', yaw=yaw, pitch=pitch, force=force)

    def chat(self, message: str) -> None:
        self.__publish__('chat', message=message)

    async def __run__(self) -> None:
        reason = None
        pubsub = None
        try:
            if self.__redis_connection__ is None:
                self.__redis_connection__ = redis.asyncio.Redis(
                    **self.redis_kwargs(self.config.get('redisConfig', {})),
                    client_name=f"afkbot_{self.session_id}")

            pubsub = self.__redis_connection__.pubsub()
            await pubsub.subscribe(self.channel_list.EVENT)
            logger.debug("Subscribed to %s", self.channel_list.EVENT)

            await self.__redis_connection__.publish(
                self.channel_list.COMMAND,
                __Command__.__serialize__(
                    'connect',
                    host=self.config['MC_HOST'],
                    port=self.config['MC_PORT'],
                    username=self.config['MC_USERNAME'],
                    password=self.config.get('MC_PASSWORD'),
                    version=self.config.get('MC_VERSION'),
                    auth='microsoft' if self.config.get('MC_PASSWORD') else 'offline'))

            async for message in pubsub.listen():
                if message['type'] != 'message':
                    continue
                reason = self.__handle_event_message__(message['data'])
                if self.ended or reason is not None:
                    break
        except (redis.RedisError, OSError) as exc:
            reason = f'transport error: {exc}'
            self._emit(SessionEvent.ERROR, exc)
        finally:
            self._mark_ended(reason or 'connection closed')
            if pubsub is not None:
                try:
                    await pubsub.reset()
                except (redis.RedisError, OSError):
                    logger.debug("Failed to reset pubsub for %s", self.session_id, exc_info=True)
            if self.__owns_connection__ and self.__redis_connection__ is not None:
                try:
                    await self.__redis_connection__.aclose()
                except (redis.RedisError, OSError):
                    logger.debug("Failed to close redis connection for %s", self.session_id, exc_info=True)

    def __handle_event_message__(self, data) -> Optional[str]:
        """Applies one event from the game client.

        Returns:
            the end reason when the event closes the session, otherwise None
        """
        if isinstance(data, bytes):
            data = data.decode()

        try:
            event = json.loads(data)
            return self.__apply_event__(event['event'], event)
        except (ValueError, KeyError, TypeError):
            logger.warning("Received malformed event on %s: %r", self.channel_list.EVENT, data)
            return None

    def __apply_event__(self, kind: str, event: dict) -> Optional[str]:
        if kind == 'spawn':
            self._mark_spawned(Vec3.from_list(event['position']), event.get('gameMode'))
        elif kind == 'move':
            self.position = Vec3.from_list(event['position'])
        elif kind == 'game':
            self.game_mode = event.get('gameMode', self.game_mode)
        elif kind == 'kicked':
            self._emit(SessionEvent.FAULTED, event.get('reason'))
        elif kind == 'error':
            self._emit(SessionEvent.ERROR, SessionError(event.get('message', 'unknown error')))
        elif kind == 'end':
            return event.get('reason') or 'connection closed'
        else:
            logger.warning("Received unknown event type: %s", kind)
        return None

    def __publish__(self, command: str, **args) -> None:
        self._ensure_open()
        if self.__redis_connection__ is None:
            raise SessionError('session is not connected')

        task = self.loop.create_task(self.__send__(__Command__.__serialize__(command, **args)))
        self.__pending__.add(task)
        task.add_done_callback(self.__pending__.discard)

    async def __send__(self, payload: str) -> None:
        try:
            await self.__redis_connection__.publish(self.channel_list.COMMAND, payload)
        except (redis.RedisError, OSError) as exc:
            logger.warning("[BOT] Dropped command %s: %s", payload, exc)

    @final
    def __hash_identity__(self, identity: str) -> str:
        # keep credentials-adjacent identifiers out of a shared Redis database
        hash_object = hashlib.sha256(identity.encode())
        base64_encoded = base64.b64encode(hash_object.digest())
        cleaned_string = re.sub(r'[^\w\s]', '', base64_encoded.decode())
        return cleaned_string[-7:]

    @staticmethod
    def redis_kwargs(redis_config: dict) -> dict:
        """Turns the redisConfig section (HOST, PORT, TLS, ...) into redis.asyncio.Redis keyword arguments.

        Settings the client does not know are dropped; None values fall back to the client defaults."""
        accepted = set(inspect.signature(redis.asyncio.Redis.__init__).parameters) - {'self', 'args', 'kwargs'}
        renamed = {'tls': 'ssl'}

        kwargs = {}
        for key, value in redis_config.items():
            name = renamed.get(key.lower(), key.lower())
            if name in accepted and value is not None:
                kwargs[name] = value
        return kwargs
