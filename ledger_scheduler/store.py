"""
In-memory ledger, budget and debt store.

Implements the store contracts the engines consume. Reads hand out copies so
engine computations never alias stored state; conditional writes run under a
lock so two runs cannot advance the same template twice.
"""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from .errors import IdempotencyViolation, NotFoundError, ValidationError
from .models import BalanceInstruction, Budget, Debt, RecurringTemplate, Reminder, TransactionInstance
from .periods import period_end


class InMemoryStore:
    """Dict-backed store, mainly for tests and single-process use"""

    def __init__(self):
        self.templates: Dict[str, RecurringTemplate] = {}
        self.transactions: Dict[str, TransactionInstance] = {}
        self.budgets: Dict[str, Budget] = {}
        self.debts: Dict[str, Debt] = {}
        self.accounts: Dict[str, Dict] = {}
        self.categories: Dict[str, Dict] = {}
        self.spend: Dict[str, float] = {}
        self.reminders: Dict[str, Reminder] = {}
        self._lock = threading.RLock()

    # Seeding

    def add_account(self, account_id: str, owner_id: str, balance: float = 0.0):
        self.accounts[account_id] = {"owner_id": owner_id, "balance": balance}

    def add_category(self, category_id: str, owner_id: str, name: Optional[str] = None):
        self.categories[category_id] = {"owner_id": owner_id, "name": name or category_id}

    def add_template(self, template: RecurringTemplate) -> str:
        self.templates[template.id] = copy.deepcopy(template)
        return template.id

    def add_budget(self, budget: Budget) -> str:
        budget = copy.deepcopy(budget)
        budget.id = budget.id or str(uuid.uuid4())
        self.budgets[budget.id] = budget
        return budget.id

    def add_debt(self, debt: Debt) -> str:
        self.debts[debt.id] = copy.deepcopy(debt)
        return debt.id

    def add_reminder(self, reminder: Reminder) -> str:
        self.reminders[reminder.id] = copy.deepcopy(reminder)
        return reminder.id

    def set_spend(self, budget_id: str, amount: float):
        self.spend[budget_id] = amount

    def balance_of(self, account_id: str) -> float:
        return self.accounts[account_id]["balance"]

    # Ledger store

    def find_due_recurring_templates(self, as_of: datetime, owner_id: Optional[str] = None) -> List[RecurringTemplate]:
        due = [
            t for t in self.templates.values()
            if t.is_recurring
            and t.next_occurrence is not None
            and t.next_occurrence <= as_of
            and (owner_id is None or t.owner_id == owner_id)
        ]
        due.sort(key=lambda t: t.next_occurrence)
        return copy.deepcopy(due)

    def get_template(self, template_id: str) -> Optional[RecurringTemplate]:
        template = self.templates.get(template_id)
        return copy.deepcopy(template) if template else None

    def advance_next_occurrence(self, template_id: str, expected: datetime, new_date: datetime) -> bool:
        """Move next_occurrence from ``expected`` to ``new_date``; False if it already moved"""
        if new_date <= expected:
            raise ValidationError("next occurrence can only move forward")

        with self._lock:
            template = self.templates.get(template_id)
            if template is None:
                raise NotFoundError("recurring template", template_id)
            if not template.is_recurring or template.next_occurrence != expected:
                return False
            template.next_occurrence = new_date
            return True

    def append_transaction(self, instance: TransactionInstance) -> str:
        instance_id = instance.id or str(uuid.uuid4())
        stored = copy.deepcopy(instance)
        stored.id = instance_id
        self.transactions[instance_id] = stored
        return instance_id

    def materialize(self,
                    template_id: str,
                    expected: datetime,
                    new_date: datetime,
                    instance: TransactionInstance,
                    instruction: Optional[BalanceInstruction] = None) -> str:
        """
        Advance the template, append the instance and apply the balance change as one unit

        Nothing is kept if any step fails, so the same date is generated again
        on the next run.
        """
        with self._lock:
            if not self.advance_next_occurrence(template_id, expected, new_date):
                raise IdempotencyViolation(f"next occurrence of {template_id} already moved")

            instance_id = None
            try:
                instance_id = self.append_transaction(instance)
                if instruction is not None:
                    self.apply_balance(instruction)
            except Exception:
                self.templates[template_id].next_occurrence = expected
                if instance_id is not None:
                    self.transactions.pop(instance_id, None)
                raise
            return instance_id

    def series_transactions(self, series_key: str) -> List[TransactionInstance]:
        return sorted(
            (t for t in self.transactions.values() if t.series_id == series_key),
            key=lambda t: t.date,
        )

    def find_series(self, series_key: str) -> List[RecurringTemplate]:
        return copy.deepcopy([t for t in self.templates.values() if t.series_key == series_key])

    def update_template(self, template_id: str, **fields) -> int:
        template = self.templates.get(template_id)
        if template is None:
            return 0
        for name, value in fields.items():
            setattr(template, name, value)
        return 1

    def update_series(self, series_key: str, **fields) -> int:
        with self._lock:
            members = [t.id for t in self.templates.values() if t.series_key == series_key]
            return sum(self.update_template(template_id, **fields) for template_id in members)

    def account_exists(self, account_id: str, owner_id: str) -> bool:
        account = self.accounts.get(account_id)
        return account is not None and account["owner_id"] == owner_id

    def category_exists(self, category_id: str, owner_id: str) -> bool:
        category = self.categories.get(category_id)
        return category is not None and category["owner_id"] == owner_id

    def apply_balance(self, instruction: BalanceInstruction):
        with self._lock:
            account = self.accounts.get(instruction.account_id)
            if account is None or account["owner_id"] != instruction.owner_id:
                raise NotFoundError("account", instruction.account_id)
            account["balance"] = round(account["balance"] + instruction.delta, 2)

    # Budget store

    def find_due_budgets(self, as_of: datetime, owner_id: Optional[str] = None) -> List[Budget]:
        due = [
            b for b in self.budgets.values()
            if b.is_recurring
            and not b.rolled_over
            and (b.end_date or period_end(b.period, b.start_date)) <= as_of
            and (owner_id is None or b.owner_id == owner_id)
        ]
        return copy.deepcopy(due)

    def find_alert_budgets(self, owner_id: Optional[str] = None) -> List[Budget]:
        return copy.deepcopy([
            b for b in self.budgets.values()
            if b.notifications.enabled
            and not b.rolled_over
            and (owner_id is None or b.owner_id == owner_id)
        ])

    def get_budget(self, budget_id: str) -> Budget:
        budget = self.budgets.get(budget_id)
        if budget is None:
            raise NotFoundError("budget", budget_id)
        return copy.deepcopy(budget)

    def current_period_spend(self, budget_id: str) -> float:
        if budget_id not in self.budgets:
            raise NotFoundError("budget", budget_id)
        return self.spend.get(budget_id, 0.0)

    def find_successor(self, budget: Budget) -> Optional[str]:
        for existing in self.budgets.values():
            if (existing.id != budget.id
                    and existing.owner_id == budget.owner_id
                    and existing.name == budget.name
                    and existing.category_id == budget.category_id
                    and existing.start_date == budget.start_date):
                return existing.id
        return None

    def create_budget(self, budget: Budget) -> str:
        with self._lock:
            if self.find_successor(budget) is not None:
                raise IdempotencyViolation(f"budget {budget.name!r} starting {budget.start_date} exists")
            return self.add_budget(budget)

    def set_recurring(self, budget_id: str, is_recurring: bool):
        if budget_id not in self.budgets:
            raise NotFoundError("budget", budget_id)
        self.budgets[budget_id].is_recurring = is_recurring

    def mark_rolled_over(self, budget_id: str):
        if budget_id not in self.budgets:
            raise NotFoundError("budget", budget_id)
        self.budgets[budget_id].rolled_over = True

    # Debt store

    def load_debt(self, debt_id: str) -> Debt:
        debt = self.debts.get(debt_id)
        if debt is None:
            raise NotFoundError("debt", debt_id)
        return copy.deepcopy(debt)

    def save_debt(self, debt: Debt):
        self.debts[debt.id] = copy.deepcopy(debt)

    def find_unpaid_debts(self, owner_id: Optional[str] = None) -> List[Debt]:
        return copy.deepcopy([
            d for d in self.debts.values()
            if not d.is_paid and (owner_id is None or d.owner_id == owner_id)
        ])

    # Reminder store

    def find_active_reminders(self,
                              as_of: datetime,
                              window_end: datetime,
                              owner_id: Optional[str] = None) -> List[Reminder]:
        due = [
            r for r in self.reminders.values()
            if r.is_active
            and as_of <= r.due_date <= window_end
            and (owner_id is None or r.owner_id == owner_id)
        ]
        due.sort(key=lambda r: r.due_date)
        return copy.deepcopy(due)

    def mark_reminder_sent(self, reminder_id: str, sent_at: datetime):
        if reminder_id not in self.reminders:
            raise NotFoundError("reminder", reminder_id)
        self.reminders[reminder_id].last_sent = sent_at
