"""
Sales Case Management Core

Payment-schedule generation and reconciliation for real-estate sales cases:
units, buyers, brokers, cases, installment schedules, payments, approvals and
finance reporting. All money math uses Decimal with centavo precision.
"""

__version__ = "1.0.0"
