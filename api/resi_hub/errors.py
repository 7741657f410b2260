"""
Business-rule failures of the resi pipeline.

Each error carries an ``outcome`` code. The engine converts them into
``ScanResult`` values instead of letting them escape, so callers can route
"already scanned" alerts separately from generic failures.
"""
from __future__ import annotations
import enum


class Outcome(str, enum.Enum):
    success = "success"
    invalid = "invalid"
    duplicate = "duplicate"
    not_found = "not_found"
    already_verified = "already_verified"
    ledger_committed = "ledger_committed"
    insufficient_stock = "insufficient_stock"
    not_ready = "not_ready"


class ResiError(Exception):
    outcome: Outcome = Outcome.invalid

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ResiError):
    """Required field missing or malformed. Always user-correctable."""
    outcome = Outcome.invalid


class UnknownExportFormat(ValidationError):
    pass


class DuplicateError(ResiError):
    outcome = Outcome.duplicate


class NotFoundError(ResiError):
    outcome = Outcome.not_found


class AlreadyVerifiedError(ResiError):
    outcome = Outcome.already_verified


class LedgerCommittedError(ResiError):
    """The receipt already posted a stock decrement to the sold-item ledger."""
    outcome = Outcome.ledger_committed


class InsufficientStockError(ResiError):
    outcome = Outcome.insufficient_stock


class NotReadyError(ResiError):
    outcome = Outcome.not_ready
