import asyncio
import logging

import afkbot.utils
from afkbot.liveness import start_liveness_server
from afkbot.scheduling import schedule_heartbeat
from afkbot.supervisor import AgentContext, ConnectionSupervisor

logger = logging.getLogger('afkbot')


async def main(config: dict) -> None:
    loop = asyncio.get_running_loop()
    afkbot.utils.install_error_guards(loop)

    runner = await start_liveness_server(config['PORT'], config['PING_MODE'])
    heartbeat = schedule_heartbeat(loop)

    ConnectionSupervisor(AgentContext(config, loop)).start()

    try:
        await asyncio.Event().wait()  # run until killed
    finally:
        heartbeat.cancel()
        await runner.cleanup()


if __name__ == "__main__":

    config = afkbot.utils.get_config_from_env()
    afkbot.utils.configure_logging(config['LOG_LEVEL'])

    try:
        asyncio.run(main(config))
    except KeyboardInterrupt:
        logger.info("Stopped")
