"""
Fiscal state of an invoice or credit note as a tagged variant.

The persisted record keeps flat columns; these values are what the rest of
the code reads and writes through FiscalDocumentMixin.fiscal_state.

TRANSITIONS:
    UNSUBMITTED -> PENDING -> AUTHORIZED
    UNSUBMITTED -> REJECTED, PENDING -> REJECTED
    REJECTED / PENDING -> (resubmit) -> PENDING | AUTHORIZED | REJECTED
AUTHORIZED is terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union


UNSUBMITTED = "UNSUBMITTED"
PENDING = "PENDING"
AUTHORIZED = "AUTHORIZED"
REJECTED = "REJECTED"

FISCAL_STATUSES = (UNSUBMITTED, PENDING, AUTHORIZED, REJECTED)

ALLOWED_TRANSITIONS = {
    UNSUBMITTED: {PENDING, AUTHORIZED, REJECTED},
    PENDING: {PENDING, AUTHORIZED, REJECTED},
    REJECTED: {PENDING, AUTHORIZED, REJECTED},
    AUTHORIZED: set(),
}


@dataclass(frozen=True)
class Unsubmitted:
    status = UNSUBMITTED


@dataclass(frozen=True)
class Pending:
    access_key: str
    legal_number: str
    status = PENDING


@dataclass(frozen=True)
class Authorized:
    authorization_code: str
    access_key: str
    legal_number: str
    authorized_at: datetime | None = None
    status = AUTHORIZED


@dataclass(frozen=True)
class Rejected:
    reason: str
    status = REJECTED


FiscalState = Union[Unsubmitted, Pending, Authorized, Rejected]


class InvalidTransitionError(Exception):
    """Raised when a fiscal state change would break monotonicity."""
    pass


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())
