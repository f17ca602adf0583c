"""
Recurrence Engine Module
Materializes recurring transaction templates, one occurrence per tick
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, Optional

from dateutil.relativedelta import relativedelta

from .errors import IdempotencyViolation, NotFoundError, ValidationError
from .models import (
    FREQUENCIES,
    BalanceInstruction,
    BatchFailure,
    BatchResult,
    RecurringTemplate,
    TransactionInstance,
)

LOGGER = logging.getLogger(__name__)


def advance(moment: datetime, frequency: str) -> datetime:
    """
    Move ``moment`` forward by one frequency unit

    Monthly and yearly steps keep the day of month, clamped to the length of
    the target month (Jan 31 -> Feb 28, Feb 29 -> Feb 28).
    """
    if frequency == "daily":
        return moment + timedelta(days=1)
    if frequency == "weekly":
        return moment + timedelta(weeks=1)
    if frequency == "monthly":
        return moment + relativedelta(months=1)
    if frequency == "yearly":
        return moment + relativedelta(years=1)
    raise ValidationError(f"Unknown frequency: {frequency!r}")


@dataclass
class MaterializedOccurrence:
    """One generated instance plus the template state change that goes with it"""

    template_id: str
    scheduled_for: datetime
    next_occurrence: datetime
    instance: TransactionInstance
    balance: Optional[BalanceInstruction]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "scheduled_for": self.scheduled_for.isoformat(),
            "next_occurrence": self.next_occurrence.isoformat(),
            "instance": self.instance.to_dict(),
            "balance": self.balance.to_dict() if self.balance else None,
        }


class RecurrenceEngine:
    """Generates due instances of recurring templates"""

    def __init__(self, store=None, clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            store: Ledger store; only needed for batch and series operations
            clock: Returns "now"; defaults to ``datetime.now``
        """
        self.store = store
        self.clock = clock or datetime.now

    def due_instance(self, template: RecurringTemplate, as_of: datetime) -> Optional[MaterializedOccurrence]:
        """
        Compute the single occurrence due for ``template`` at ``as_of``

        Pure: the template is not modified. Missed occurrences are not caught
        up; the next tick picks up the following one.

        Returns:
            The occurrence, or None when nothing is due
        """
        if template.frequency not in FREQUENCIES:
            raise ValidationError(f"Unknown frequency: {template.frequency!r}")
        if not template.is_recurring or template.next_occurrence is None:
            return None
        if template.next_occurrence > as_of:
            return None

        scheduled_for = template.next_occurrence
        instance = TransactionInstance(
            owner_id=template.owner_id,
            amount=template.amount,
            description=template.description,
            account_id=template.account_id,
            date=scheduled_for,
            type=template.type,
            category_id=template.category_id,
            tags=list(template.tags),
            notes=template.notes,
            series_id=template.series_key,
        )
        return MaterializedOccurrence(
            template_id=template.id,
            scheduled_for=scheduled_for,
            next_occurrence=advance(scheduled_for, template.frequency),
            instance=instance,
            balance=BalanceInstruction.for_transaction(instance),
        )

    def due_instances(self, template: RecurringTemplate, as_of: datetime) -> Iterator[TransactionInstance]:
        """Yield the instance due at ``as_of``; never more than one per call"""
        occurrence = self.due_instance(template, as_of)
        if occurrence is not None:
            yield occurrence.instance

    def process_due(self,
                    as_of: Optional[datetime] = None,
                    time_budget: Optional[float] = None,
                    owner_id: Optional[str] = None) -> BatchResult:
        """
        Materialize one occurrence for every due template

        Each template is handled independently: a missing account or category
        fails that template only, and a template already advanced by another
        run is skipped.

        Args:
            as_of: Moment to evaluate against (default: clock)
            time_budget: Seconds after which remaining templates are deferred
            owner_id: Restrict the batch to one owner

        Returns:
            BatchResult with MaterializedOccurrence items
        """
        as_of = as_of or self.clock()
        result = BatchResult(as_of=as_of)
        templates = list(self.store.find_due_recurring_templates(as_of, owner_id=owner_id))
        LOGGER.info(f"Processing {len(templates)} recurring templates due at {as_of.isoformat()}")

        started = time.monotonic()
        for index, template in enumerate(templates):
            if time_budget is not None and time.monotonic() - started >= time_budget:
                result.deferred.extend(t.id for t in templates[index:])
                LOGGER.warning(f"Recurring batch out of time, deferring {len(result.deferred)} templates")
                break

            try:
                occurrence = self._materialize(template, as_of)
                if occurrence is None:
                    result.skipped.append(template.id)
                else:
                    result.items.append(occurrence)
            except IdempotencyViolation:
                LOGGER.info(f"Template {template.id} already advanced, skipping")
                result.skipped.append(template.id)
            except NotFoundError as e:
                LOGGER.error(f"Skipping template {template.id}: {e}")
                result.failures.append(BatchFailure(template.id, str(e), kind="not_found"))
            except Exception as e:
                LOGGER.error(f"Error processing template {template.id}: {str(e)}")
                result.failures.append(BatchFailure(template.id, str(e)))

        LOGGER.info(
            f"Recurring batch completed: {result.processed} created, "
            f"{len(result.skipped)} skipped, {len(result.failures)} failed"
        )
        return result

    def _materialize(self, template: RecurringTemplate, as_of: datetime) -> Optional[MaterializedOccurrence]:
        occurrence = self.due_instance(template, as_of)
        if occurrence is None:
            return None

        if not self.store.account_exists(template.account_id, template.owner_id):
            raise NotFoundError("account", template.account_id)
        if template.category_id and not self.store.category_exists(template.category_id, template.owner_id):
            raise NotFoundError("category", template.category_id)

        # Conditional on the old next_occurrence; all writes land together or not at all
        occurrence.instance.id = self.store.materialize(
            template.id,
            occurrence.scheduled_for,
            occurrence.next_occurrence,
            occurrence.instance,
            occurrence.balance,
        )

        LOGGER.info(
            f"Created instance {occurrence.instance.id} of series {occurrence.instance.series_id} "
            f"dated {occurrence.scheduled_for.date()}, next {occurrence.next_occurrence.date()}"
        )
        return occurrence

    def set_series_recurring(self,
                             template_id: str,
                             is_recurring: bool,
                             resume_from: Optional[datetime] = None) -> int:
        """
        Turn a whole series on or off

        Turning off clears ``next_occurrence`` on every template of the series.
        Turning on schedules templates without a next occurrence one frequency
        unit after ``resume_from`` (default: clock).

        Returns:
            Number of templates updated
        """
        template = self._get_template(template_id)
        key = template.series_key

        if not is_recurring:
            updated = self.store.update_series(key, is_recurring=False, next_occurrence=None)
            LOGGER.info(f"Stopped series {key} ({updated} templates)")
            return updated

        resume_from = resume_from or self.clock()
        updated = 0
        for member in self.store.find_series(key):
            next_occurrence = member.next_occurrence or advance(resume_from, member.frequency)
            updated += self.store.update_template(member.id, is_recurring=True, next_occurrence=next_occurrence)
        LOGGER.info(f"Resumed series {key} ({updated} templates)")
        return updated

    def change_series_frequency(self, template_id: str, frequency: str) -> int:
        """Apply ``frequency`` to every template sharing the series"""
        if frequency not in FREQUENCIES:
            raise ValidationError(f"Unknown frequency: {frequency!r}")

        template = self._get_template(template_id)
        updated = self.store.update_series(template.series_key, frequency=frequency)
        LOGGER.info(f"Series {template.series_key} now {frequency} ({updated} templates)")
        return updated

    def _get_template(self, template_id: str) -> RecurringTemplate:
        template = self.store.get_template(template_id)
        if template is None:
            raise NotFoundError("recurring template", template_id)
        return template
