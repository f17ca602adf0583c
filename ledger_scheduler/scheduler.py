"""
Engine Scheduler Module
Runs the recurrence, rollover, alert and reminder batches once per day
with an injected clock and store
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from .amortization import DebtAmortizer, payment_reminder
from .config import EngineConfig
from .models import BatchFailure, BatchResult
from .notifications import LoggingNotificationSink, safe_emit
from .periods import end_of_day
from .recurrence import RecurrenceEngine
from .reminders import reminders_due
from .rollover import BudgetRolloverProcessor
from .thresholds import BudgetThresholdEvaluator

RECURRING_JOB = "recurring"
ROLLOVER_JOB = "rollovers"
ALERTS_JOB = "budget_alerts"
DEBT_REMINDERS_JOB = "debt_reminders"
REMINDERS_JOB = "reminders"


class EngineScheduler:
    """Schedules and executes the engine's periodic batches"""

    def __init__(self,
                 store,
                 sink=None,
                 clock: Optional[Callable[[], datetime]] = None,
                 config: Optional[EngineConfig] = None):
        """
        Initialize scheduler

        Args:
            store: Object implementing the ledger, budget and debt store contracts
            sink: Notification sink (default: log only)
            clock: Returns "now"; defaults to ``datetime.now``
            config: Engine configuration (default: built-in defaults)
        """
        self.store = store
        self.sink = sink or LoggingNotificationSink()
        self.clock = clock or datetime.now
        self.config = config or EngineConfig()

        self.recurrence = RecurrenceEngine(store, self.clock)
        self.rollovers = BudgetRolloverProcessor(store, self.clock)
        self.thresholds = BudgetThresholdEvaluator(self.clock)
        self.amortizer = DebtAmortizer(store, self.clock)

        self.last_run: Dict[str, datetime] = {}
        self.running = set()

    def should_run(self, job: str, current_time: Optional[datetime] = None) -> bool:
        """
        Check if ``job`` still has to run today

        Args:
            job: Job name
            current_time: Optional datetime for testing

        Returns:
            True if the job has not run on the current day yet
        """
        if current_time is None:
            current_time = self.clock()

        last_run = self.last_run.get(job)
        return last_run is None or last_run.date() != current_time.date()

    def _run(self, job: str, action: Callable[[datetime], Dict[str, Any]]) -> Dict[str, Any]:
        if job in self.running:
            return {
                "status": "error",
                "job": job,
                "message": "Job already running"
            }

        now = self.clock()
        if not self.should_run(job, now):
            return {
                "status": "skipped",
                "job": job,
                "message": "Already ran today"
            }

        self.running.add(job)
        try:
            result = {
                "status": "success",
                "job": job,
                **action(now),
                "ran_at": now.isoformat()
            }
            self.last_run[job] = now

        except Exception as e:
            result = {
                "status": "error",
                "job": job,
                "message": str(e)
            }

        finally:
            self.running.discard(job)

        return result

    def run_recurring_job(self) -> Dict[str, Any]:
        """Materialize one occurrence of every due recurring template"""
        def action(now):
            batch = self.recurrence.process_due(now, time_budget=self.config.batch_timeout_seconds)
            return {"batch": batch.to_dict()}

        return self._run(RECURRING_JOB, action)

    def run_rollover_job(self) -> Dict[str, Any]:
        """
        Roll over budgets whose period ends today or earlier

        Evaluated against the end of the current day so a budget closes on its
        last day, whatever its period kind.
        """
        def action(now):
            batch = self.rollovers.process_due(end_of_day(now), time_budget=self.config.batch_timeout_seconds)
            return {"batch": batch.to_dict()}

        return self._run(ROLLOVER_JOB, action)

    def run_budget_alerts_job(self) -> Dict[str, Any]:
        """Emit an alert for every budget past its notification threshold"""
        def action(now):
            budgets = self.store.find_alert_budgets()
            batch = self.thresholds.check_all(budgets, self.store.current_period_spend, now)
            sent = sum(1 for alert in batch.items if safe_emit(self.sink, alert))
            return {
                "alerts_processed": batch.processed,
                "alerts_sent": sent,
                "batch": batch.to_dict()
            }

        return self._run(ALERTS_JOB, action)

    def run_debt_reminders_job(self) -> Dict[str, Any]:
        """Remind owners of debt payments due within the lead window"""
        def action(now):
            batch = BatchResult(as_of=now)
            for debt in self.store.find_unpaid_debts():
                try:
                    reminder = payment_reminder(debt, now, self.config.debt_reminder_lead_days)
                except Exception as e:
                    batch.failures.append(BatchFailure(debt.id, str(e)))
                    continue

                if reminder is None:
                    batch.skipped.append(debt.id)
                else:
                    batch.items.append(reminder)

            sent = sum(1 for reminder in batch.items if safe_emit(self.sink, reminder))
            return {
                "debts_processed": batch.processed,
                "reminders_sent": sent,
                "batch": batch.to_dict()
            }

        return self._run(DEBT_REMINDERS_JOB, action)

    def run_reminders_job(self) -> Dict[str, Any]:
        """Send bill reminders due within the reminder window"""
        def action(now):
            window_days = self.config.reminder_window_days
            reminders = self.store.find_active_reminders(now, now + timedelta(days=window_days))
            batch = BatchResult(as_of=now, items=reminders_due(reminders, now, window_days))
            notified = {notice.reminder_id for notice in batch.items}
            batch.skipped.extend(r.id for r in reminders if r.id not in notified)

            sent = 0
            for notice in batch.items:
                if not safe_emit(self.sink, notice):
                    continue
                try:
                    self.store.mark_reminder_sent(notice.reminder_id, now)
                    sent += 1
                except Exception as e:
                    batch.failures.append(BatchFailure(notice.reminder_id, str(e)))

            return {
                "reminders_processed": batch.processed,
                "reminders_sent": sent,
                "batch": batch.to_dict()
            }

        return self._run(REMINDERS_JOB, action)

    def run_all(self) -> Dict[str, Dict[str, Any]]:
        """Run every job once, e.g. from a single daily cron entry"""
        return {
            RECURRING_JOB: self.run_recurring_job(),
            ROLLOVER_JOB: self.run_rollover_job(),
            ALERTS_JOB: self.run_budget_alerts_job(),
            DEBT_REMINDERS_JOB: self.run_debt_reminders_job(),
            REMINDERS_JOB: self.run_reminders_job(),
        }

    def get_next_run_time(self, run_at: str) -> datetime:
        """Next occurrence of the HH:MM wall-clock time ``run_at``"""
        now = self.clock()
        hour, minute = (int(part) for part in run_at.split(":"))
        next_run = now.replace(hour=hour, minute=minute, second=0, microsecond=0)

        # If already past today's slot, schedule for tomorrow
        if next_run <= now:
            next_run += timedelta(days=1)

        return next_run
