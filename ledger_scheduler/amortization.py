"""
Debt Amortization Module
Payoff schedules and payment recording for loans and credit lines
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from dateutil.relativedelta import relativedelta

from .errors import NotFoundError, ValidationError
from .models import PAYMENT_FREQUENCIES, BalanceInstruction, Debt, TransactionInstance

LOGGER = logging.getLogger(__name__)

MAX_ITERATIONS = 1200  # 100 years of monthly steps

# A principal portion within half a cent of the balance closes the debt
CENT_TOLERANCE = 0.005

PAYMENTS_PER_MONTH = {
    "weekly": 4,
    "bi-weekly": 2,
    "monthly": 1,
    "yearly": 1,
}


def monthly_equivalent(payment_amount: float, frequency: str) -> float:
    """Scale a payment to the monthly step the schedule iterates in"""
    if frequency not in PAYMENTS_PER_MONTH:
        raise ValidationError(f"Unknown payment frequency: {frequency!r}")
    return payment_amount * PAYMENTS_PER_MONTH[frequency]


def next_payment_date(start: datetime, frequency: str, as_of: datetime) -> datetime:
    """First scheduled payment date on or after ``as_of``"""
    if frequency not in PAYMENT_FREQUENCIES:
        raise ValidationError(f"Unknown payment frequency: {frequency!r}")

    step = 0
    candidate = start
    while candidate < as_of:
        step += 1
        if frequency == "weekly":
            candidate = start + timedelta(weeks=step)
        elif frequency == "bi-weekly":
            candidate = start + timedelta(weeks=2 * step)
        elif frequency == "monthly":
            candidate = start + relativedelta(months=step)
        else:
            candidate = start + relativedelta(years=step)
    return candidate


@dataclass
class AmortizationRow:
    payment_index: int
    date: datetime
    principal: float
    interest: float
    payment: float
    balance: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_index": self.payment_index,
            "date": self.date.isoformat(),
            "principal": round(self.principal, 2),
            "interest": round(self.interest, 2),
            "payment": round(self.payment, 2),
            "balance": round(self.balance, 2),
        }


@dataclass
class AmortizationResult:
    """A schedule that pays the debt off"""

    payoff_date: Optional[datetime]
    total_interest: float
    total_payments: int
    monthly_payment: float
    schedule: List[AmortizationRow] = field(default_factory=list)
    converged: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "converged": self.converged,
            "payoff_date": self.payoff_date.isoformat() if self.payoff_date else None,
            "total_interest": round(self.total_interest, 2),
            "total_payments": self.total_payments,
            "monthly_payment": round(self.monthly_payment, 2),
            "schedule": [row.to_dict() for row in self.schedule],
        }


@dataclass
class NonConvergentAmortization:
    """
    The payment never clears the balance within the iteration cap.

    Usually the payment does not cover the monthly interest.
    """

    principal: float
    monthly_payment: float
    first_interest: float
    iterations: int
    remaining_balance: float
    schedule: None = None
    converged: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "converged": self.converged,
            "principal": round(self.principal, 2),
            "monthly_payment": round(self.monthly_payment, 2),
            "first_interest": round(self.first_interest, 2),
            "iterations": self.iterations,
            "remaining_balance": round(self.remaining_balance, 2),
        }


@dataclass
class PaymentRecord:
    """An actual payment split into interest and principal"""

    debt: Debt
    amount: float
    interest: float
    principal: float
    transaction: TransactionInstance
    balance: Optional[BalanceInstruction]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "debt_id": self.debt.id,
            "amount": round(self.amount, 2),
            "interest": round(self.interest, 2),
            "principal": round(self.principal, 2),
            "current_amount": round(self.debt.current_amount, 2),
            "is_paid": self.debt.is_paid,
            "end_date": self.debt.end_date.isoformat() if self.debt.end_date else None,
            "transaction": self.transaction.to_dict(),
        }


AmortizationOutcome = Union[AmortizationResult, NonConvergentAmortization]


class DebtAmortizer:
    """Simulates payoff schedules and applies real payments"""

    def __init__(self, store=None, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or datetime.now

    def amortize(self,
                 principal: float,
                 annual_rate_pct: float,
                 payment_amount: float,
                 frequency: str,
                 start: Optional[datetime] = None,
                 extra_payment: float = 0.0) -> AmortizationOutcome:
        """
        Simulate a payoff schedule in monthly steps

        Args:
            principal: Outstanding balance
            annual_rate_pct: Annual interest rate in percent
            payment_amount: Payment per ``frequency`` period
            frequency: weekly, bi-weekly, monthly or yearly
            start: Date the schedule counts months from (default: clock)
            extra_payment: Additional amount paid every month

        Returns:
            AmortizationResult, or NonConvergentAmortization when the balance
            is still positive after MAX_ITERATIONS months
        """
        if annual_rate_pct < 0:
            raise ValidationError("Interest rate cannot be negative")
        if payment_amount < 0 or extra_payment < 0:
            raise ValidationError("Payment amounts cannot be negative")

        monthly_rate = annual_rate_pct / 100 / 12
        payment = monthly_equivalent(payment_amount, frequency) + extra_payment
        start = start or self.clock()

        if principal <= 0:
            return AmortizationResult(payoff_date=None, total_interest=0.0, total_payments=0, monthly_payment=payment)

        balance = principal
        total_interest = 0.0
        schedule = []
        index = 0

        while balance > 0 and index < MAX_ITERATIONS:
            index += 1
            interest = balance * monthly_rate
            principal_portion = payment - interest
            this_payment = payment

            if principal_portion >= balance - CENT_TOLERANCE:
                # Final payment shrinks to exactly close the balance
                principal_portion = balance
                this_payment = principal_portion + interest
                balance = 0.0
            else:
                balance -= principal_portion

            total_interest += interest
            schedule.append(AmortizationRow(
                payment_index=index,
                date=start + relativedelta(months=index),
                principal=principal_portion,
                interest=interest,
                payment=this_payment,
                balance=balance,
            ))

        if balance > 0:
            LOGGER.warning(
                f"Amortization of {principal:.2f} at {annual_rate_pct}% with {payment:.2f}/month "
                f"did not converge in {MAX_ITERATIONS} months"
            )
            return NonConvergentAmortization(
                principal=principal,
                monthly_payment=payment,
                first_interest=principal * monthly_rate,
                iterations=index,
                remaining_balance=balance,
            )

        return AmortizationResult(
            payoff_date=schedule[-1].date,
            total_interest=total_interest,
            total_payments=len(schedule),
            monthly_payment=payment,
            schedule=schedule,
        )

    def payoff_plan(self, debt: Debt, extra_payment: float = 0.0, start: Optional[datetime] = None) -> AmortizationOutcome:
        """Schedule for the debt's current balance and agreed payment"""
        return self.amortize(
            debt.current_amount,
            debt.interest_rate,
            debt.payment_amount,
            debt.payment_frequency,
            start=start,
            extra_payment=extra_payment,
        )

    def record_payment(self,
                       debt: Debt,
                       amount: float,
                       paid_at: Optional[datetime] = None,
                       account_id: Optional[str] = None) -> PaymentRecord:
        """
        Split a real payment into interest and principal

        Pure: returns an updated copy of ``debt``. When the balance reaches
        zero the debt is flagged paid and ``end_date`` is stamped.
        """
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")
        if debt.is_paid:
            raise ValidationError(f"Debt {debt.id} is already paid off")

        paid_at = paid_at or self.clock()
        interest = debt.current_amount * debt.monthly_rate
        principal = amount - interest
        current_amount = max(0.0, debt.current_amount - principal)
        is_paid = current_amount <= 0

        updated = replace(
            debt,
            current_amount=current_amount,
            is_paid=is_paid,
            end_date=paid_at if is_paid else debt.end_date,
        )
        transaction = TransactionInstance(
            owner_id=debt.owner_id,
            amount=amount,
            description=f"Payment for {debt.name}",
            account_id=account_id or debt.account_id,
            date=paid_at,
            type="expense",
            notes=f"Debt payment: {principal:.2f} principal, {interest:.2f} interest",
        )
        return PaymentRecord(
            debt=updated,
            amount=amount,
            interest=interest,
            principal=principal,
            transaction=transaction,
            balance=BalanceInstruction.for_transaction(transaction),
        )

    def apply_payment(self,
                      debt_id: str,
                      amount: float,
                      paid_at: Optional[datetime] = None,
                      account_id: Optional[str] = None) -> PaymentRecord:
        """Record a payment against a stored debt and persist the result"""
        debt = self.store.load_debt(debt_id)
        if debt is None:
            raise NotFoundError("debt", debt_id)

        account_id = account_id or debt.account_id
        if account_id and not self.store.account_exists(account_id, debt.owner_id):
            raise NotFoundError("account", account_id)

        record = self.record_payment(debt, amount, paid_at=paid_at, account_id=account_id)
        self.store.save_debt(record.debt)
        record.transaction.id = self.store.append_transaction(record.transaction)
        if record.balance is not None:
            self.store.apply_balance(record.balance)

        LOGGER.info(
            f"Recorded payment of {amount:.2f} on debt {debt_id}: "
            f"{record.principal:.2f} principal, {record.interest:.2f} interest, "
            f"{record.debt.current_amount:.2f} left"
        )
        if record.debt.is_paid:
            LOGGER.info(f"Debt {debt_id} paid off")
        return record


@dataclass
class DebtPaymentReminder:
    debt_id: str
    owner_id: str
    debt_name: str
    payment_amount: float
    due_date: datetime
    current_amount: float
    account_id: Optional[str] = None

    kind = "debt_payment_reminder"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "debt_id": self.debt_id,
            "owner_id": self.owner_id,
            "debt_name": self.debt_name,
            "payment_amount": round(self.payment_amount, 2),
            "due_date": self.due_date.isoformat(),
            "current_amount": round(self.current_amount, 2),
            "account_id": self.account_id,
        }


def payment_reminder(debt: Debt, as_of: datetime, lead_days: int = 3) -> Optional[DebtPaymentReminder]:
    """Reminder for an unpaid debt whose next payment falls within ``lead_days``"""
    if debt.is_paid:
        return None

    due_date = next_payment_date(debt.start_date, debt.payment_frequency, as_of)
    if due_date > as_of + timedelta(days=lead_days):
        return None

    return DebtPaymentReminder(
        debt_id=debt.id,
        owner_id=debt.owner_id,
        debt_name=debt.name,
        payment_amount=debt.payment_amount,
        due_date=due_date,
        current_amount=debt.current_amount,
        account_id=debt.account_id,
    )
