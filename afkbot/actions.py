import logging
import math
import random

from afkbot.core import GameMode, SessionError, SessionHandle

logger = logging.getLogger(__name__)

WALK_RANGE: int = 20
JUMP_HOLD: float = 0.5
FLY_HOLD: float = 3.0
MAX_PITCH: float = math.pi / 6


def announce(session: SessionHandle, message: str) -> None:
    """Sends a chat message. A rejected message is logged and otherwise ignored."""
    try:
        session.chat(message)
    except SessionError as exc:
        logger.debug("[BOT] Chat %r not sent: %s", message, exc)


def hold_control(session: SessionHandle, control: str, seconds: float) -> None:
    """Presses a control and releases it after the given delay.

    The release runs on the session's loop and is not awaited by the caller.
    Nothing is released on a session that ended in the meantime.
    """
    session.set_control_state(control, True)

    def release():
        if not session.ended:
            session.set_control_state(control, False)

    session.loop.call_later(seconds, release)


def walk_random(session: SessionHandle, rng: random.Random) -> None:
    """Walks to a random block within WALK_RANGE blocks of the current position on each horizontal axis.

    Note: no reachability check is done; a goal that cannot be pathed is the movement planner's problem."""
    dx = rng.randint(-WALK_RANGE, WALK_RANGE)
    dz = rng.randint(-WALK_RANGE, WALK_RANGE)
    target = session.position.offset(dx, 0, dz)
    announce(session, f"Walking to {target.x:.1f}, {target.z:.1f}")

    block = target.floored()
    session.set_goal(block.x, block.y, block.z)


def jump_once(session: SessionHandle, rng: random.Random) -> None:
    announce(session, "Jump!")
    hold_control(session, 'jump', JUMP_HOLD)


def fly_up(session: SessionHandle, rng: random.Random) -> None:
    """Holds jump for a few seconds, which ascends while flying in creative mode.

    Outside creative mode this only announces that it can't fly."""
    if session.game_mode != GameMode.CREATIVE:
        announce(session, "Can't fly here")
        return

    announce(session, "Flying up!")
    hold_control(session, 'jump', FLY_HOLD)


def look_around(session: SessionHandle, rng: random.Random) -> None:
    yaw = rng.random() * 2 * math.pi
    pitch = rng.uniform(-MAX_PITCH, MAX_PITCH)
    session.look(yaw, pitch, force=True)


ACTIONS = (walk_random, jump_once, fly_up, look_around)
