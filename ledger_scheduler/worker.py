#!/usr/bin/env python3
"""
Worker Service for the scheduling engine
Runs the daily recurrence, rollover, alert and reminder jobs
"""

import logging
import time
from typing import Any, Dict

import schedule

from .config import EngineConfig
from .notifications import LoggingNotificationSink, WebhookNotificationSink
from .postgres_store import PostgresStore
from .scheduler import EngineScheduler

logger = logging.getLogger(__name__)


class WorkerService:
    """Wires configuration, store, sink and scheduler together"""

    def __init__(self, config: EngineConfig = None, store=None, sink=None):
        """Initialize worker service"""
        self.config = config or EngineConfig.from_environment()

        if store is None:
            store = PostgresStore(self.config.db_config)
            store.init_schema()
        self.store = store

        if sink is None:
            if self.config.alert_webhook_url:
                sink = WebhookNotificationSink(self.config.alert_webhook_url)
            else:
                sink = LoggingNotificationSink()
        self.sink = sink

        self.scheduler = EngineScheduler(self.store, sink=self.sink, config=self.config)
        logger.info("Worker service initialized")

    def register_jobs(self, scheduler=schedule):
        """Register the daily jobs with the ``schedule`` library"""
        scheduler.every().day.at(self.config.recurring_run_at).do(self.run_job, "recurring")
        scheduler.every().day.at(self.config.rollover_run_at).do(self.run_job, "rollovers")
        scheduler.every().day.at(self.config.alerts_run_at).do(self.run_job, "budget_alerts")
        scheduler.every().day.at(self.config.debt_reminders_run_at).do(self.run_job, "debt_reminders")
        scheduler.every().day.at(self.config.reminders_run_at).do(self.run_job, "reminders")

        logger.info(
            f"Jobs scheduled: recurring {self.config.recurring_run_at}, "
            f"rollovers {self.config.rollover_run_at}, "
            f"alerts {self.config.alerts_run_at}, "
            f"debt reminders {self.config.debt_reminders_run_at}, "
            f"bill reminders {self.config.reminders_run_at}"
        )

    def run_job(self, job: str) -> Dict[str, Any]:
        """Run one scheduler job and log its outcome"""
        runners = {
            "recurring": self.scheduler.run_recurring_job,
            "rollovers": self.scheduler.run_rollover_job,
            "budget_alerts": self.scheduler.run_budget_alerts_job,
            "debt_reminders": self.scheduler.run_debt_reminders_job,
            "reminders": self.scheduler.run_reminders_job,
        }
        logger.info(f"Running {job} job...")
        result = runners[job]()

        if result["status"] == "error":
            logger.error(f"{job} job failed: {result.get('message')}")
        else:
            batch = result.get("batch", {})
            logger.info(
                f"{job} job {result['status']}: "
                f"{batch.get('processed', 0)} processed, "
                f"{len(batch.get('failures', []))} failed, "
                f"{len(batch.get('deferred', []))} deferred"
            )
        return result


def main():
    """Main worker loop"""
    config = EngineConfig.from_environment()
    logging.basicConfig(level=config.log_level, format='%(asctime)s - %(levelname)s - %(message)s')
    logger.info("Starting scheduling engine worker")

    worker = WorkerService(config)
    worker.register_jobs()

    # Catch up on anything that fell due while the worker was down
    logger.info("Running initial recurring pass...")
    worker.run_job("recurring")

    while True:
        try:
            schedule.run_pending()
            time.sleep(60)  # Check every minute

        except KeyboardInterrupt:
            logger.info("Worker service shutting down...")
            break
        except Exception as e:
            logger.error(f"Worker loop error: {str(e)}")
            time.sleep(60)


if __name__ == "__main__":
    main()
