"""
PostgreSQL-backed ledger, budget and debt store.

Exclusivity for recurring templates comes from a conditional update on
``next_occurrence``; duplicate successor budgets and duplicate instances are
rejected by unique indexes. An occurrence is materialized in a single
database transaction.
"""

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import psycopg2
import psycopg2.extras

from .errors import IdempotencyViolation, NotFoundError, ValidationError
from .models import (
    BalanceInstruction,
    Budget,
    Debt,
    NotificationPolicy,
    RecurringTemplate,
    Reminder,
    RolloverPolicy,
    TransactionInstance,
)
from .periods import period_bounds

LOGGER = logging.getLogger(__name__)

INSERT_TRANSACTION = """
    INSERT INTO transactions (
        id, owner_id, amount, description, account_id, category_id,
        type, tags, notes, series_id, transaction_date
    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT DO NOTHING
"""

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id VARCHAR(64) PRIMARY KEY,
        owner_id VARCHAR(64) NOT NULL,
        name VARCHAR(255),
        balance DECIMAL(14,2) DEFAULT 0
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS categories (
        id VARCHAR(64) PRIMARY KEY,
        owner_id VARCHAR(64) NOT NULL,
        name VARCHAR(255)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS recurring_templates (
        id VARCHAR(64) PRIMARY KEY,
        owner_id VARCHAR(64) NOT NULL,
        amount DECIMAL(14,2) NOT NULL,
        description TEXT,
        account_id VARCHAR(64) NOT NULL,
        category_id VARCHAR(64),
        type VARCHAR(16) DEFAULT 'expense',
        tags JSONB DEFAULT '[]',
        notes TEXT,
        frequency VARCHAR(16) NOT NULL,
        next_occurrence TIMESTAMP,
        series_id VARCHAR(64),
        is_recurring BOOLEAN DEFAULT TRUE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id VARCHAR(64) PRIMARY KEY,
        owner_id VARCHAR(64) NOT NULL,
        amount DECIMAL(14,2) NOT NULL,
        description TEXT,
        account_id VARCHAR(64),
        category_id VARCHAR(64),
        type VARCHAR(16) DEFAULT 'expense',
        tags JSONB DEFAULT '[]',
        notes TEXT,
        series_id VARCHAR(64),
        transaction_date TIMESTAMP NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_transactions_series_date
    ON transactions(series_id, transaction_date);
    """,
    """
    CREATE TABLE IF NOT EXISTS budgets (
        id VARCHAR(64) PRIMARY KEY,
        owner_id VARCHAR(64) NOT NULL,
        name VARCHAR(255) NOT NULL,
        amount DECIMAL(14,2) NOT NULL,
        period VARCHAR(16) NOT NULL,
        start_date TIMESTAMP NOT NULL,
        end_date TIMESTAMP,
        category_id VARCHAR(64),
        category_name VARCHAR(255),
        is_recurring BOOLEAN DEFAULT FALSE,
        rollover_type VARCHAR(16) DEFAULT 'none',
        rollover_max_amount DECIMAL(14,2),
        notifications_enabled BOOLEAN DEFAULT TRUE,
        notification_threshold DECIMAL(5,2) DEFAULT 80,
        rolled_over BOOLEAN DEFAULT FALSE
    );
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_budgets_successor
    ON budgets(owner_id, name, (COALESCE(category_id, '')), start_date);
    """,
    """
    CREATE TABLE IF NOT EXISTS debts (
        id VARCHAR(64) PRIMARY KEY,
        owner_id VARCHAR(64) NOT NULL,
        name VARCHAR(255) NOT NULL,
        lender VARCHAR(255),
        type VARCHAR(32) DEFAULT 'loan',
        initial_amount DECIMAL(14,2) NOT NULL,
        current_amount DECIMAL(14,2) NOT NULL,
        interest_rate DECIMAL(5,2) NOT NULL,
        payment_frequency VARCHAR(16) NOT NULL,
        payment_amount DECIMAL(14,2) NOT NULL,
        start_date TIMESTAMP NOT NULL,
        end_date TIMESTAMP,
        is_paid BOOLEAN DEFAULT FALSE,
        account_id VARCHAR(64)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS reminders (
        id VARCHAR(64) PRIMARY KEY,
        owner_id VARCHAR(64) NOT NULL,
        name VARCHAR(255) NOT NULL,
        type VARCHAR(16) NOT NULL,
        amount DECIMAL(14,2),
        due_date TIMESTAMP NOT NULL,
        frequency VARCHAR(16) NOT NULL,
        category VARCHAR(255),
        notes TEXT,
        is_active BOOLEAN DEFAULT TRUE,
        notification_method VARCHAR(8) DEFAULT 'both',
        days_before JSONB DEFAULT '[1, 3, 7]',
        last_sent TIMESTAMP
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_reminders_due_date
    ON reminders(due_date) WHERE is_active;
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_templates_next_occurrence
    ON recurring_templates(next_occurrence) WHERE is_recurring;
    """,
]


def _template_from_row(row: Dict[str, Any]) -> RecurringTemplate:
    return RecurringTemplate(
        id=row["id"],
        owner_id=row["owner_id"],
        amount=float(row["amount"]),
        description=row["description"] or "",
        account_id=row["account_id"],
        frequency=row["frequency"],
        next_occurrence=row["next_occurrence"],
        category_id=row["category_id"],
        type=row["type"],
        tags=list(row["tags"] or []),
        notes=row["notes"],
        series_id=row["series_id"],
        is_recurring=row["is_recurring"],
    )


def _budget_from_row(row: Dict[str, Any]) -> Budget:
    max_amount = row["rollover_max_amount"]
    return Budget(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        amount=float(row["amount"]),
        period=row["period"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        category_id=row["category_id"],
        category_name=row["category_name"],
        is_recurring=row["is_recurring"],
        rollover=RolloverPolicy(
            type=row["rollover_type"],
            max_amount=float(max_amount) if max_amount is not None else None,
        ),
        notifications=NotificationPolicy(
            enabled=row["notifications_enabled"],
            threshold=float(row["notification_threshold"]),
        ),
        rolled_over=row["rolled_over"],
    )


def _reminder_from_row(row: Dict[str, Any]) -> Reminder:
    amount = row["amount"]
    return Reminder(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        type=row["type"],
        due_date=row["due_date"],
        frequency=row["frequency"],
        amount=float(amount) if amount is not None else None,
        category=row["category"],
        notes=row["notes"],
        is_active=row["is_active"],
        method=row["notification_method"],
        days_before=list(row["days_before"] or []),
        last_sent=row["last_sent"],
    )


def _transaction_params(instance_id: str, instance: TransactionInstance) -> tuple:
    return (
        instance_id,
        instance.owner_id,
        instance.amount,
        instance.description,
        instance.account_id,
        instance.category_id,
        instance.type,
        json.dumps(instance.tags),
        instance.notes,
        instance.series_id,
        instance.date,
    )


def _debt_from_row(row: Dict[str, Any]) -> Debt:
    return Debt(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        lender=row["lender"] or "",
        type=row["type"],
        initial_amount=float(row["initial_amount"]),
        current_amount=float(row["current_amount"]),
        interest_rate=float(row["interest_rate"]),
        payment_frequency=row["payment_frequency"],
        payment_amount=float(row["payment_amount"]),
        start_date=row["start_date"],
        end_date=row["end_date"],
        is_paid=row["is_paid"],
        account_id=row["account_id"],
    )


class PostgresStore:
    """Store contracts on top of psycopg2"""

    def __init__(self, db_config: Dict[str, Any], clock: Optional[Callable[[], datetime]] = None):
        self.db_config = db_config
        self.clock = clock or datetime.now

    def _get_connection(self):
        return psycopg2.connect(**self.db_config)

    def _fetch_all(self, query: str, params=()) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                cursor.execute(query, params)
                return cursor.fetchall()

    def _fetch_one(self, query: str, params=()) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                cursor.execute(query, params)
                return cursor.fetchone()

    def _execute(self, query: str, params=()) -> int:
        with self._get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query, params)
                conn.commit()
                return cursor.rowcount

    def init_schema(self):
        """Create tables and indexes if they don't exist"""
        try:
            with self._get_connection() as conn:
                with conn.cursor() as cursor:
                    for statement in SCHEMA:
                        cursor.execute(statement)
                    conn.commit()
                    LOGGER.info("Database schema initialized")
        except Exception as e:
            LOGGER.error(f"Database initialization error: {str(e)}")
            raise

    # Ledger store

    def find_due_recurring_templates(self, as_of: datetime, owner_id: Optional[str] = None) -> List[RecurringTemplate]:
        query = """
            SELECT * FROM recurring_templates
            WHERE is_recurring AND next_occurrence <= %s
        """
        params = [as_of]
        if owner_id is not None:
            query += " AND owner_id = %s"
            params.append(owner_id)
        query += " ORDER BY next_occurrence"
        return [_template_from_row(row) for row in self._fetch_all(query, params)]

    def get_template(self, template_id: str) -> Optional[RecurringTemplate]:
        row = self._fetch_one("SELECT * FROM recurring_templates WHERE id = %s", (template_id,))
        return _template_from_row(row) if row else None

    def advance_next_occurrence(self, template_id: str, expected: datetime, new_date: datetime) -> bool:
        if new_date <= expected:
            raise ValidationError("next occurrence can only move forward")

        updated = self._execute("""
            UPDATE recurring_templates SET next_occurrence = %s
            WHERE id = %s AND is_recurring AND next_occurrence = %s
        """, (new_date, template_id, expected))
        return updated == 1

    def append_transaction(self, instance: TransactionInstance) -> str:
        instance_id = instance.id or str(uuid.uuid4())
        inserted = self._execute(INSERT_TRANSACTION, _transaction_params(instance_id, instance))
        if inserted == 0:
            raise IdempotencyViolation(f"transaction for series {instance.series_id} on {instance.date} exists")
        return instance_id

    def materialize(self,
                    template_id: str,
                    expected: datetime,
                    new_date: datetime,
                    instance: TransactionInstance,
                    instruction: Optional[BalanceInstruction] = None) -> str:
        """Advance, insert and apply the balance change in one transaction"""
        if new_date <= expected:
            raise ValidationError("next occurrence can only move forward")

        instance_id = instance.id or str(uuid.uuid4())
        with self._get_connection() as conn:
            try:
                with conn.cursor() as cursor:
                    cursor.execute("""
                        UPDATE recurring_templates SET next_occurrence = %s
                        WHERE id = %s AND is_recurring AND next_occurrence = %s
                    """, (new_date, template_id, expected))
                    if cursor.rowcount != 1:
                        raise IdempotencyViolation(f"next occurrence of {template_id} already moved")

                    cursor.execute(INSERT_TRANSACTION, _transaction_params(instance_id, instance))
                    if cursor.rowcount == 0:
                        raise IdempotencyViolation(
                            f"transaction for series {instance.series_id} on {instance.date} exists"
                        )

                    if instruction is not None:
                        cursor.execute(
                            "UPDATE accounts SET balance = balance + %s WHERE id = %s AND owner_id = %s",
                            (instruction.delta, instruction.account_id, instruction.owner_id),
                        )
                        if cursor.rowcount == 0:
                            raise NotFoundError("account", instruction.account_id)
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        return instance_id

    def find_series(self, series_key: str) -> List[RecurringTemplate]:
        rows = self._fetch_all(
            "SELECT * FROM recurring_templates WHERE id = %s OR series_id = %s",
            (series_key, series_key),
        )
        return [_template_from_row(row) for row in rows]

    def _update(self, where: str, where_params, fields: Dict[str, Any]) -> int:
        allowed = {"is_recurring", "next_occurrence", "frequency"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(f"Cannot update template fields: {sorted(unknown)}")
        assignments = ", ".join(f"{name} = %s" for name in fields)
        return self._execute(
            f"UPDATE recurring_templates SET {assignments} WHERE {where}",
            (*fields.values(), *where_params),
        )

    def update_template(self, template_id: str, **fields) -> int:
        return self._update("id = %s", (template_id,), fields)

    def update_series(self, series_key: str, **fields) -> int:
        return self._update("id = %s OR series_id = %s", (series_key, series_key), fields)

    def account_exists(self, account_id: str, owner_id: str) -> bool:
        row = self._fetch_one("SELECT 1 AS found FROM accounts WHERE id = %s AND owner_id = %s", (account_id, owner_id))
        return row is not None

    def category_exists(self, category_id: str, owner_id: str) -> bool:
        row = self._fetch_one("SELECT 1 AS found FROM categories WHERE id = %s AND owner_id = %s", (category_id, owner_id))
        return row is not None

    def apply_balance(self, instruction: BalanceInstruction):
        updated = self._execute(
            "UPDATE accounts SET balance = balance + %s WHERE id = %s AND owner_id = %s",
            (instruction.delta, instruction.account_id, instruction.owner_id),
        )
        if updated == 0:
            raise NotFoundError("account", instruction.account_id)

    # Budget store

    def find_due_budgets(self, as_of: datetime, owner_id: Optional[str] = None) -> List[Budget]:
        # Open-ended budgets have no end date; the processor filters on their
        # computed period end
        query = """
            SELECT * FROM budgets
            WHERE is_recurring AND NOT rolled_over
              AND (end_date IS NULL OR end_date <= %s)
        """
        params = [as_of]
        if owner_id is not None:
            query += " AND owner_id = %s"
            params.append(owner_id)
        return [_budget_from_row(row) for row in self._fetch_all(query, params)]

    def find_alert_budgets(self, owner_id: Optional[str] = None) -> List[Budget]:
        query = "SELECT * FROM budgets WHERE notifications_enabled AND NOT rolled_over"
        params = []
        if owner_id is not None:
            query += " AND owner_id = %s"
            params.append(owner_id)
        return [_budget_from_row(row) for row in self._fetch_all(query, params)]

    def get_budget(self, budget_id: str) -> Budget:
        row = self._fetch_one("SELECT * FROM budgets WHERE id = %s", (budget_id,))
        if row is None:
            raise NotFoundError("budget", budget_id)
        return _budget_from_row(row)

    def current_period_spend(self, budget_id: str) -> float:
        budget = self.get_budget(budget_id)
        if budget.end_date is not None:
            start, end = budget.start_date, budget.end_date
        else:
            period = period_bounds(budget.period, self.clock())
            start, end = period.start, period.end

        row = self._fetch_one("""
            SELECT COALESCE(SUM(amount), 0) AS total FROM transactions
            WHERE owner_id = %s AND type = 'expense'
              AND transaction_date BETWEEN %s AND %s
              AND (%s::varchar IS NULL OR category_id = %s)
        """, (budget.owner_id, start, end, budget.category_id, budget.category_id))
        return float(row["total"])

    def find_successor(self, budget: Budget) -> Optional[str]:
        row = self._fetch_one("""
            SELECT id FROM budgets
            WHERE owner_id = %s AND name = %s
              AND COALESCE(category_id, '') = COALESCE(%s, '')
              AND start_date = %s
        """, (budget.owner_id, budget.name, budget.category_id, budget.start_date))
        return row["id"] if row else None

    def create_budget(self, budget: Budget) -> str:
        budget_id = budget.id or str(uuid.uuid4())
        inserted = self._execute("""
            INSERT INTO budgets (
                id, owner_id, name, amount, period, start_date, end_date,
                category_id, category_name, is_recurring, rollover_type,
                rollover_max_amount, notifications_enabled, notification_threshold
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
        """, (
            budget_id,
            budget.owner_id,
            budget.name,
            budget.amount,
            budget.period,
            budget.start_date,
            budget.end_date,
            budget.category_id,
            budget.category_name,
            budget.is_recurring,
            budget.rollover.type,
            budget.rollover.max_amount,
            budget.notifications.enabled,
            budget.notifications.threshold,
        ))
        if inserted == 0:
            raise IdempotencyViolation(f"budget {budget.name!r} starting {budget.start_date} exists")
        return budget_id

    def set_recurring(self, budget_id: str, is_recurring: bool):
        if self._execute("UPDATE budgets SET is_recurring = %s WHERE id = %s", (is_recurring, budget_id)) == 0:
            raise NotFoundError("budget", budget_id)

    def mark_rolled_over(self, budget_id: str):
        if self._execute("UPDATE budgets SET rolled_over = TRUE WHERE id = %s", (budget_id,)) == 0:
            raise NotFoundError("budget", budget_id)

    # Debt store

    def load_debt(self, debt_id: str) -> Debt:
        row = self._fetch_one("SELECT * FROM debts WHERE id = %s", (debt_id,))
        if row is None:
            raise NotFoundError("debt", debt_id)
        return _debt_from_row(row)

    def save_debt(self, debt: Debt):
        updated = self._execute("""
            UPDATE debts SET current_amount = %s, is_paid = %s, end_date = %s
            WHERE id = %s
        """, (debt.current_amount, debt.is_paid, debt.end_date, debt.id))
        if updated == 0:
            raise NotFoundError("debt", debt.id)

    def find_unpaid_debts(self, owner_id: Optional[str] = None) -> List[Debt]:
        query = "SELECT * FROM debts WHERE NOT is_paid"
        params = []
        if owner_id is not None:
            query += " AND owner_id = %s"
            params.append(owner_id)
        return [_debt_from_row(row) for row in self._fetch_all(query, params)]

    # Reminder store

    def find_active_reminders(self,
                              as_of: datetime,
                              window_end: datetime,
                              owner_id: Optional[str] = None) -> List[Reminder]:
        query = """
            SELECT * FROM reminders
            WHERE is_active AND due_date BETWEEN %s AND %s
        """
        params = [as_of, window_end]
        if owner_id is not None:
            query += " AND owner_id = %s"
            params.append(owner_id)
        query += " ORDER BY due_date"
        return [_reminder_from_row(row) for row in self._fetch_all(query, params)]

    def mark_reminder_sent(self, reminder_id: str, sent_at: datetime):
        if self._execute("UPDATE reminders SET last_sent = %s WHERE id = %s", (sent_at, reminder_id)) == 0:
            raise NotFoundError("reminder", reminder_id)
