"""
Ledger Scheduler - temporal and financial scheduling engine
"""

from .amortization import DebtAmortizer, NonConvergentAmortization
from .errors import IdempotencyViolation, NotFoundError, ValidationError
from .forecast import ForecastEngine
from .periods import next_period_end, next_period_start, period_end, period_start
from .recurrence import RecurrenceEngine
from .reminders import reminders_due
from .rollover import BudgetRolloverProcessor
from .scheduler import EngineScheduler
from .store import InMemoryStore
from .thresholds import BudgetThresholdEvaluator

__all__ = [
    'BudgetRolloverProcessor',
    'BudgetThresholdEvaluator',
    'DebtAmortizer',
    'EngineScheduler',
    'ForecastEngine',
    'IdempotencyViolation',
    'InMemoryStore',
    'NonConvergentAmortization',
    'NotFoundError',
    'RecurrenceEngine',
    'ValidationError',
    'next_period_end',
    'next_period_start',
    'period_end',
    'period_start',
    'reminders_due',
]

__version__ = '0.1.0'
