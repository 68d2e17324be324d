"""
Autofish - Main Entry Point

Connects one account to the gateway, wires the event queue into the
orchestrator and runs until SIGTERM / Ctrl+C.

Usage:
    python main.py                  # Run with settings from .env / config
    python main.py --init-config    # Write config/bot_config.json template and exit
    python main.py --no-file-log    # Console logging only
"""
from dotenv import load_dotenv

# Load environment variables from .env file into os.environ
load_dotenv()

import argparse
import asyncio
import logging
import signal
import sqlite3
import sys

import aiohttp

from core.config import CONFIG_FILE, BotSettings, write_config_template
from core.errors import ConfigurationError
from core.logging_setup import setup_logging
from core.monitoring import StatusDashboard
from core.orchestrator import BotOrchestrator
from core.storage import Storage
from gateway.client import GatewayClient
from gateway.http import ActionClient

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Autofish - autonomous fishing bot")
    parser.add_argument("--log-level", type=str, help="Override LOG_LEVEL (DEBUG, INFO, ...)")
    parser.add_argument("--init-config", action="store_true", help="Write a config template and exit")
    parser.add_argument("--no-file-log", action="store_true", help="Disable the rotating log file")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """
    Main execution loop.

    1. Parses command line arguments and loads settings.
    2. Opens one shared aiohttp session for the gateway and the REST API.
    3. Starts the gateway supervisor and the orchestrator side by side.
    4. Waits for SIGTERM / SIGINT, then stops both and prints a summary.
    """
    args = parse_args(argv)
    settings = BotSettings()
    setup_logging(args.log_level or settings.log_level, None if args.no_file_log else "logs/autofish.log")

    if args.init_config:
        if write_config_template(CONFIG_FILE):
            logger.info(f"📝 Template written to {CONFIG_FILE}; fill in credentials and restart.")
        else:
            logger.info(f"{CONFIG_FILE} already exists; leaving it untouched.")
        return 0

    try:
        settings.require_credentials()
    except ConfigurationError as e:
        logger.critical(f"❌ {e}")
        return 1

    storage = Storage(settings.db_path)
    dashboard = StatusDashboard()

    async with aiohttp.ClientSession() as http_session:
        gateway = GatewayClient(settings, http_session)
        actions = ActionClient(settings, http_session, session_id_provider=lambda: gateway.session_id)
        orchestrator = BotOrchestrator(settings, actions, gateway.events, storage=storage)
        orchestrator.scheduler.load_defaults(settings)

        stop_signal = asyncio.Event()

        def handle_signal():
            logger.info("🛑 Received stop signal. Initiating graceful shutdown...")
            stop_signal.set()
            orchestrator.stop()

        loop = asyncio.get_running_loop()
        if sys.platform != "win32":
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, handle_signal)

        gateway_task = asyncio.create_task(gateway.run_forever(), name="gateway")
        orchestrator_task = asyncio.create_task(orchestrator.run(), name="orchestrator")
        try:
            await stop_signal.wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("👋 Stopping (KeyboardInterrupt)...")
            orchestrator.stop()
        finally:
            logger.info("🧹 Cleaning up resources...")
            await gateway.stop()
            try:
                await asyncio.wait_for(orchestrator_task, timeout=10)
            except asyncio.TimeoutError:
                logger.warning("Orchestrator did not stop in time; cancelling.")
                orchestrator_task.cancel()
            except Exception as e:
                logger.error(f"Orchestrator ended with an error: {e}")
            gateway_task.cancel()
            await asyncio.gather(gateway_task, return_exceptions=True)
            dashboard.print_status(orchestrator.status)
            try:
                logger.info(
                    f"History: {storage.count_rows('catch_history')} catches, "
                    f"{storage.count_rows('cooldown_events')} cooldown hits, "
                    f"{storage.count_rows('biome_stats')} biomes learned"
                )
            except sqlite3.Error as e:
                logger.error(f"Could not read history totals: {e}")
    return 0


def run() -> None:
    """Console-script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
