"""
Credit Core

Credit lifecycle and payment-enforcement engine: annuity amortization,
payment schedules, an overdue-payment sweep and atomic balance mutation,
with Decimal money math throughout.
"""

__version__ = "1.0.0"
