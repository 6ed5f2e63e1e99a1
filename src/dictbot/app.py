"""Main application entry point."""
import asyncio
import logging
import signal
from typing import Optional

from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    MessageHandler,
    filters,
)

from dictbot.config import settings
from dictbot.models.base import init_db
from dictbot.monitoring import start_monitoring
from dictbot.services.scheduler_service import SchedulerService
from dictbot.services.study_service import SessionRegistry
from dictbot.bot import (
    handle_callback,
    handle_document,
    handle_error,
    handle_export,
    handle_help,
    handle_message,
    handle_reset,
    handle_reset_all,
    handle_start,
    handle_stats,
    handle_unit,
    handle_units,
    make_speech_engine,
)


class DictBot:
    """Main application class."""

    def __init__(self):
        """Initialize the application."""
        self.application: Optional[Application] = None
        self.registry: Optional[SessionRegistry] = None
        self.scheduler: Optional[SchedulerService] = None
        self.running = False
        self.logger = logging.getLogger(__name__)

    def add_handlers(self, application: Application) -> None:
        """Register command, button and file handlers."""
        application.add_handler(CommandHandler("start", handle_start))
        application.add_handler(CommandHandler("help", handle_help))
        application.add_handler(CommandHandler("units", handle_units))
        application.add_handler(CommandHandler("unit", handle_unit))
        application.add_handler(CommandHandler("stats", handle_stats))
        application.add_handler(CommandHandler("reset", handle_reset))
        application.add_handler(CommandHandler("resetall", handle_reset_all))
        application.add_handler(CommandHandler("export", handle_export))
        application.add_handler(CallbackQueryHandler(handle_callback))
        application.add_handler(MessageHandler(filters.Document.ALL, handle_document))
        application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))
        application.add_error_handler(handle_error)

    async def start(self) -> None:
        """Start the application."""
        if self.running:
            return

        try:
            # Initialize database
            init_db()
            self.logger.info("Database initialized")

            if settings.monitoring.enabled:
                start_monitoring(settings.monitoring.port)
                self.logger.info(f"Metrics served on port {settings.monitoring.port}")

            # Concurrent updates let a second audio tap arrive while a clip plays
            self.application = (
                Application.builder()
                .token(settings.bot.token)
                .concurrent_updates(True)
                .build()
            )
            self.logger.info("Application created")

            bot = self.application.bot
            self.registry = SessionRegistry(engine_factory=lambda chat_id: make_speech_engine(bot, chat_id))
            self.application.bot_data["registry"] = self.registry

            self.add_handlers(self.application)
            self.logger.info("Handlers added")

            # Create scheduler service
            self.scheduler = SchedulerService(self.registry)
            await self.scheduler.start()
            self.logger.info("Scheduler service started")

            # Start application
            await self.application.initialize()
            await self.application.start()
            await self.application.updater.start_polling()
            self.logger.info("Application started")

            self.running = True

        except Exception as e:
            self.logger.error("Failed to start application: %s", str(e))
            self.running = True
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the application."""
        if not self.running:
            return

        try:
            # Stop scheduler service
            if self.scheduler:
                await self.scheduler.stop()
                self.scheduler = None
                self.logger.info("Scheduler service stopped")

            # Stop application
            if self.application:
                if self.application.running:
                    await self.application.updater.stop()
                    await self.application.stop()
                    await self.application.shutdown()
                self.application = None
                self.logger.info("Application stopped")

            # Close study sessions and their database sessions
            if self.registry:
                await self.registry.close_all()
                self.registry = None
                self.logger.info("Study sessions closed")

            self.running = False

        except Exception as e:
            self.logger.error("Error while stopping application: %s", str(e))
            self.running = False
            self.application = None
            self.scheduler = None
            self.registry = None
            raise

    def run(self) -> None:
        """Run the application until SIGINT or SIGTERM."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, loop.stop)

        try:
            loop.run_until_complete(self.start())
            loop.run_forever()
        except KeyboardInterrupt:
            self.logger.info("Received keyboard interrupt")
        finally:
            self.logger.info("Shutting down...")
            loop.run_until_complete(self.stop())
            loop.close()
