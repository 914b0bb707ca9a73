"""
Background scheduler re-evaluating eligibility of pending applications
"""
import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from benefits_bpp.core.config import Settings, get_settings
from benefits_bpp.core.database import get_session_local
from benefits_bpp.core.exceptions import PartialBatchFailure
from benefits_bpp.core.logging_config import LoggingConfig
from benefits_bpp.core.metrics import eligibility_checks_total
from benefits_bpp.core.utils import utcnow
from benefits_bpp.models.application import Application, EligibilityStatus
from benefits_bpp.services.application_store import ApplicationStore
from benefits_bpp.services.content_provider import ContentProviderClient
from benefits_bpp.services.eligibility_evaluator import (
    EligibilityEvaluator, build_eligibility_input)

logger = LoggingConfig.get_logger(__name__)


@dataclass
class SweepReport:
    """Outcome of one sweep"""
    processed: int = 0
    updated: int = 0
    failures: List[PartialBatchFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "updated": self.updated,
            "failed": self.failed,
            "failedApplicationIds": [failure.item_id for failure in self.failures],
        }


class EligibilityScheduler:
    """Periodic, best-effort eligibility recheck"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        content_provider: Optional[ContentProviderClient] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        evaluator: Optional[EligibilityEvaluator] = None,
    ):
        self.settings = settings or get_settings()
        self.content_provider = content_provider or ContentProviderClient(self.settings)
        self.session_factory = session_factory
        self.evaluator = evaluator or EligibilityEvaluator()
        self.running = False
        self._task: Optional[asyncio.Task] = None

    def _open_session(self) -> Session:
        factory = self.session_factory or get_session_local()
        return factory()

    async def start(self):
        """Start the eligibility scheduler"""
        if self.running:
            logger.warning("Eligibility scheduler is already running")
            return

        self.running = True
        logger.info(
            f"Starting eligibility scheduler "
            f"(every {self.settings.eligibility_check_interval_minutes} min, "
            f"batch {self.settings.eligibility_check_batch_size})"
        )
        self._task = asyncio.create_task(self._scheduler_loop())

    async def stop(self):
        """Stop the eligibility scheduler"""
        self.running = False
        logger.info("Stopping eligibility scheduler...")
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _scheduler_loop(self):
        """Sweep, then sleep for the configured interval"""
        interval = self.settings.eligibility_check_interval_minutes * 60
        while self.running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in eligibility scheduler loop: {e}", exc_info=True)
            await asyncio.sleep(interval)

    async def run_once(self) -> SweepReport:
        """
        Evaluate one batch of due applications

        Each application is fetched, evaluated strictly and written back on
        its own; a failure is recorded and the sweep moves on.
        """
        report = SweepReport()
        stale_before = utcnow() - timedelta(hours=self.settings.eligibility_check_last_process_hours)

        db = self._open_session()
        try:
            store = ApplicationStore(db, self.settings)
            candidates = store.find_eligibility_candidates(
                stale_before=stale_before,
                limit=self.settings.eligibility_check_batch_size,
            )
            for application in candidates:
                report.processed += 1
                try:
                    await self._check_application(store, application)
                    report.updated += 1
                except Exception as e:
                    failure = PartialBatchFailure(application.id, e)
                    report.failures.append(failure)
                    eligibility_checks_total.labels(result="failed").inc()
                    logger.warning(f"Failed to process application {application.id}: {e}")
        finally:
            db.close()

        if report.processed:
            logger.info(
                f"Eligibility sweep: {report.updated}/{report.processed} updated, {report.failed} failed",
                extra=report.to_dict(),
            )
        return report

    async def _check_application(self, store: ApplicationStore, application: Application) -> None:
        benefit = await self.content_provider.get_benefit_by_id(application.benefit_id)
        attributes, rules = build_eligibility_input(benefit, application.to_dict())
        result = self.evaluator.evaluate(attributes, rules, strict=True)

        status = EligibilityStatus.ELIGIBLE if result.is_eligible else EligibilityStatus.INELIGIBLE
        store.update_application(application.id, {
            "eligibility_status": status.value,
            "eligibility_result": result.to_dict(),
            "eligibility_checked_at": utcnow(),
        })
        eligibility_checks_total.labels(result=status.value).inc()


# Global scheduler instance
_eligibility_scheduler: Optional[EligibilityScheduler] = None


def get_eligibility_scheduler() -> EligibilityScheduler:
    """Get global eligibility scheduler instance"""
    global _eligibility_scheduler
    if _eligibility_scheduler is None:
        _eligibility_scheduler = EligibilityScheduler()
    return _eligibility_scheduler
