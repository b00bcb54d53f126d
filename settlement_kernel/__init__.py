"""
Settlement Kernel

Persistence, period gate and audit infrastructure for the container
settlement engine:
- Monthly financial periods gating every money-affecting mutation
- Atomic units of work on an explicit SQLAlchemy session
- Append-only payouts, payments, returns and audit events
- Structured JSON logging
"""

__version__ = "0.1.0"
