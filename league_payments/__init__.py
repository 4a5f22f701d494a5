"""
League payments service.

Payment intent lifecycle for league and team fees: intent creation against
Stripe, durable local tracking, reconciliation and outcome events.
"""

__version__ = "1.0.0"
