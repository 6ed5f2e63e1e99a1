"""Service for managing scheduled tasks."""
import asyncio
import logging
from typing import Dict, Optional

from dictbot.config import settings
from dictbot.services.study_service import SessionRegistry

logger = logging.getLogger(__name__)


class SchedulerService:
    """Service for managing periodic tasks of the study sessions."""

    def __init__(self, registry: SessionRegistry, tick_interval: Optional[float] = None):
        """Initialize the service with the session registry."""
        self.registry = registry
        self.tick_interval = tick_interval or settings.study.tick_interval_seconds
        self.tasks: Dict[str, asyncio.Task] = {}
        self.running = False

    async def start(self) -> None:
        """Start the scheduler service."""
        if self.running:
            return

        self.running = True
        logger.info("Starting scheduler service...")

        # Start study time accrual task
        self.tasks["study_time"] = asyncio.create_task(self._run_study_time())

    async def stop(self) -> None:
        """Stop the scheduler service."""
        if not self.running:
            return

        self.running = False
        logger.info("Stopping scheduler service...")

        # Cancel all tasks
        for task in self.tasks.values():
            task.cancel()

        # Wait for tasks to complete
        await asyncio.gather(*self.tasks.values(), return_exceptions=True)
        self.tasks.clear()

    def accrue_study_time(self) -> int:
        """Credit one tick of study time to every session with an open unit."""
        credited = 0
        for session in self.registry.all():
            try:
                if session.tick(settings.study.tick_minutes):
                    credited += 1
            except Exception as e:
                logger.error(
                    "Error accruing study time for user %s: %s",
                    session.user.telegram_id,
                    str(e),
                )
        return credited

    async def _run_study_time(self) -> None:
        """Run study time accrual task."""
        while self.running:
            try:
                await asyncio.sleep(self.tick_interval)
                credited = self.accrue_study_time()
                logger.debug("Study time credited to %d sessions", credited)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in study time task: %s", str(e))
