"""
Account Service

Bank account lifecycle and access-control engine: account records with
enforced invariants, a status state machine, unique account numbering and
idempotent provisioning after KYC verification.
"""

__version__ = "1.0.0"
