import logging
import os
import sys
from typing import Mapping, Optional

from afkbot.liveness import PING_MODES

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

DEFAULTS = {
    'MC_HOST': 'localhost',
    'MC_PORT': 25565,
    'MC_USERNAME': 'RandomBot',
    'PORT': 3000,
    'REDIS_PORT': 6379,
    'PING_MODE': 'pong',
    'BOT_ID_PREFIX': 'afkbot',
    'LOG_LEVEL': 'INFO',
}


def get_config_from_env(environ: Optional[Mapping[str, str]] = None) -> dict:
    """Reads the bot configuration from environment variables.

    Every setting has a default except MC_PASSWORD (unset means offline
    mode) and MC_VERSION (unset means the version is auto-detected).
    Ports that are not numbers, and an unknown PING_MODE, fall back to
    their defaults.

    Args:
        environ: the mapping to read from. Defaults to os.environ.

    Returns:
        dict: uppercase settings plus a 'redisConfig' dict for the session bridge
    """
    if environ is None:
        environ = os.environ

    config = {
        'MC_HOST': environ.get('MC_HOST') or DEFAULTS['MC_HOST'],
        'MC_PORT': _get_port(environ, 'MC_PORT'),
        'MC_USERNAME': environ.get('MC_USERNAME') or DEFAULTS['MC_USERNAME'],
        'MC_PASSWORD': environ.get('MC_PASSWORD') or None,
        'MC_VERSION': environ.get('MC_VERSION') or None,
        'PORT': _get_port(environ, 'PORT'),
        'PING_MODE': _get_ping_mode(environ),
        'BOT_ID_PREFIX': environ.get('BOT_ID_PREFIX') or DEFAULTS['BOT_ID_PREFIX'],
        'LOG_LEVEL': (environ.get('LOG_LEVEL') or DEFAULTS['LOG_LEVEL']).upper(),
    }

    config['redisConfig'] = dict(
        HOST=environ.get('REDIS_HOST') or 'localhost',
        PORT=_get_port(environ, 'REDIS_PORT'),
        USERNAME=environ.get('REDIS_USERNAME') or None,
        PASSWORD=environ.get('REDIS_PASSWORD') or None,
        TLS=(environ.get('REDIS_TLS') or '').lower() in ('1', 'true', 'yes'))

    return config


def _get_port(environ: Mapping[str, str], key: str) -> int:
    try:
        port = int(environ.get(key) or 0)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", key, environ.get(key))
        port = 0
    return port or DEFAULTS[key]


def _get_ping_mode(environ: Mapping[str, str]) -> str:
    mode = (environ.get('PING_MODE') or DEFAULTS['PING_MODE']).lower()
    if mode not in PING_MODES:
        logger.warning("Ignoring unknown PING_MODE=%r, expected one of %s", mode, ', '.join(PING_MODES))
        mode = DEFAULTS['PING_MODE']
    return mode


def configure_logging(level: str = 'INFO') -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)])


def log_loop_exception(loop, context: dict) -> None:
    """asyncio exception handler: logs unhandled task and callback errors instead of dying."""
    exc = context.get('exception')
    message = context.get('message', 'Unhandled error')
    if exc is not None:
        logger.error("Unhandled: %s", message, exc_info=(type(exc), exc, exc.__traceback__))
    else:
        logger.error("Unhandled: %s", message)


def log_uncaught_exception(exc_type, exc_value, exc_traceback) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logger.critical("Uncaught: %s", exc_value, exc_info=(exc_type, exc_value, exc_traceback))


def install_error_guards(loop) -> None:
    """Turns otherwise fatal errors into log lines for the life of the process."""
    loop.set_exception_handler(log_loop_exception)
    sys.excepthook = log_uncaught_exception
