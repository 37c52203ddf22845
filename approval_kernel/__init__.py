"""
Approval Kernel

Authorization engine for sensitive business operations:
- Amount-banded approval chain resolution (fail-closed)
- Multi-step approval request state machine
- Single-use, operation-bound approval consumption
- Startup verification of critical approval chains
- Append-only, hash-chained audit trail
"""

__version__ = "0.1.0"
