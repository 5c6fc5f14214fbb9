"""
School Kernel

Persistence and domain core of the school fee ledger and promotion engine:
- Append-only payments and receipts, balances derived on read
- Typed exceptions and structured logging
- Monotonic receipt and promotion-log sequences
- Exactly one current academic year and term per school
"""

__version__ = "0.1.0"
