"""
Keep-alive HTTP server for hosts that suspend idle web services.
Point an uptime monitor at /ping; neither route looks at the game session.
"""

import logging
import time
from typing import Callable, NamedTuple

from aiohttp import web

logger = logging.getLogger(__name__)

ROOT_TEXT = 'Minecraft bot is alive.'
PING_TEXT = 'pong'

PING_MODES = ('pong', 'uptime')

clock_key = web.AppKey('clock', Callable[[], float])
started_at_key = web.AppKey('started_at', float)


class Uptime(NamedTuple):
    days: int
    hours: int
    minutes: int
    seconds: int

    def message(self) -> str:
        return (f"Server is online for {self.days} day(s) {self.hours} hour(s) "
                f"{self.minutes} minute(s) {self.seconds} second(s)")


def uptime_parts(total_seconds: float) -> Uptime:
    """Splits elapsed seconds into days/hours/minutes/seconds by floor division."""
    total = int(total_seconds // 1)
    return Uptime(days=total // 86400,
                  hours=(total % 86400) // 3600,
                  minutes=(total % 3600) // 60,
                  seconds=total % 60)


async def root(request: web.Request) -> web.Response:
    return web.Response(text=ROOT_TEXT)


async def ping(request: web.Request) -> web.Response:
    return web.Response(text=PING_TEXT)


async def ping_uptime(request: web.Request) -> web.Response:
    app = request.app
    elapsed = app[clock_key]() - app[started_at_key]
    return web.json_response({'message': uptime_parts(elapsed).message()})


def create_app(ping_mode: str = 'pong', clock: Callable[[], float] = time.monotonic) -> web.Application:
    """Builds the liveness application.

    Args:
        ping_mode: 'pong' answers /ping with plain text, 'uptime' with a JSON uptime message
        clock: monotonic seconds; uptime is measured from the moment the app is created
    """
    if ping_mode not in PING_MODES:
        raise ValueError(f"unknown ping mode {ping_mode!r}, expected one of {PING_MODES}")

    app = web.Application()
    app[clock_key] = clock
    app[started_at_key] = clock()
    app.router.add_get('/', root)
    app.router.add_get('/ping', ping_uptime if ping_mode == 'uptime' else ping)
    return app


async def start_liveness_server(port: int = 3000, ping_mode: str = 'pong', host: str = '0.0.0.0') -> web.AppRunner:
    """Starts serving on the running loop and returns the runner; call runner.cleanup() to stop."""
    runner = web.AppRunner(create_app(ping_mode), access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info("[HTTP] Listening on %s. Endpoints: / & /ping", port)
    return runner
