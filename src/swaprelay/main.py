"""Main entry point - runs the API plus relayer monitoring and reconciliation."""

import asyncio
import logging
import signal
from datetime import timedelta

import uvicorn

from swaprelay.api.app import create_app
from swaprelay.config import get_settings
from swaprelay.errors import RPCError
from swaprelay.ledger.database import close_db, init_db
from swaprelay.notifications.telegram import close_bot, get_alert_sink
from swaprelay.relay.engine import get_relay_engine
from swaprelay.services.reconciliation import Reconciler

logger = logging.getLogger(__name__)


class Application:
    """Main application: API server and background loops."""

    def __init__(self):
        self.settings = get_settings()
        self.engine = None
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """Start all services."""
        # Configure logging
        log_level = logging.DEBUG if self.settings.debug else logging.INFO
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        logger.info("Starting swaprelay...")
        logger.info(f"Environment: {self.settings.environment}")
        logger.info(f"Chain {self.settings.chain_id}, dry run: {self.settings.dry_run}")
        if self.settings.is_production and not self.settings.admin_token:
            logger.warning("ADMIN_TOKEN not set - admin API is disabled in production")

        # Initialize database
        await init_db()
        logger.info("Database initialized")

        tasks = []

        if self.settings.has_relayer_key:
            self.engine = get_relay_engine()
            logger.info(f"Relayer address: {self.engine.relayer_address}")
            tasks.append(asyncio.create_task(self._run_monitor()))
        else:
            logger.warning("RELAYER_PRIVATE_KEY not set - swaps disabled")

        tasks.append(asyncio.create_task(self._run_reconciler()))
        tasks.append(asyncio.create_task(self._run_api()))
        logger.info("API task created")

        # Wait for shutdown signal
        await self._shutdown_event.wait()

        # Cancel all tasks
        for task in tasks:
            task.cancel()

        # Wait for tasks to complete
        await asyncio.gather(*tasks, return_exceptions=True)

        # Cleanup
        await self._cleanup()

    async def _run_api(self):
        """Run the FastAPI server."""
        try:
            app = create_app()
            config = uvicorn.Config(
                app,
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level="debug" if self.settings.debug else "info",
            )
            server = uvicorn.Server(config)
            logger.info(f"Starting API server on {self.settings.api_host}:{self.settings.api_port}")
            await server.serve()
        except asyncio.CancelledError:
            logger.info("API server cancelled")
        except Exception as e:
            logger.error(f"API error: {e}")
            raise

    async def _run_monitor(self):
        """Check the relayer balance periodically."""
        monitor = self.engine.monitor
        try:
            while True:
                try:
                    snapshot = await monitor.check()
                    logger.debug(f"Relayer balance {snapshot.balance} ({snapshot.level.value})")
                except RPCError as e:
                    logger.error(f"Relayer balance check failed: {e}")
                await asyncio.sleep(self.settings.monitor_interval_seconds)
        except asyncio.CancelledError:
            logger.info("Balance monitor cancelled")

    async def _run_reconciler(self):
        """Replay reconciliation records and report stuck intents."""
        reconciler = Reconciler(alerts=get_alert_sink())
        stuck_after = timedelta(minutes=self.settings.stuck_intent_minutes)
        try:
            while True:
                try:
                    await reconciler.run_once(limit=self.settings.reconcile_batch_size)
                    await reconciler.find_stuck_intents(stuck_after)
                except Exception as e:
                    logger.error(f"Reconciliation pass failed: {e}")
                await asyncio.sleep(self.settings.reconcile_interval_seconds)
        except asyncio.CancelledError:
            logger.info("Reconciler cancelled")

    async def _cleanup(self):
        """Cleanup resources."""
        logger.info("Cleaning up...")

        await get_alert_sink().drain()
        await close_bot()
        await close_db()
        logger.info("Cleanup complete")

    def shutdown(self):
        """Signal shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()


def main():
    """Main entry point."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    app = Application()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        loop.close()


if __name__ == "__main__":
    main()
