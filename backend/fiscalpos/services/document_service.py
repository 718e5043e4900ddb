# Overview: Atomic document sequences for internal numbers and legal sequentials.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CreditNote, DocumentSequence, Sale
from ..models.notifications import DOC_CREDIT_NOTE, DOC_SALE


SALE_SEQUENCE = "SALE"
CREDIT_NOTE_SEQUENCE = "CREDIT_NOTE"

SALE_PREFIX = "NV"
CREDIT_NOTE_PREFIX = "NC"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _allocate(sequence_key: str) -> int:
    """
    Atomically take the next number of a sequence.

    The UPDATE takes the write lock before the row is read back, so two
    writers can never observe the same value. A missing row is created
    starting at 1; a concurrent creator loses on the unique key and falls
    back to the UPDATE path.
    """
    if not sequence_key:
        raise DocumentSequenceError("sequence_key is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.sequence_key == sequence_key)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    def _read_back() -> int:
        db.session.flush()
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(sequence_key=sequence_key)
            .scalar()
        )
        return current - 1

    if db.session.execute(stmt).rowcount:
        return _read_back()

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(sequence_key=sequence_key, next_number=2))
        return 1
    except IntegrityError:
        if not db.session.execute(stmt).rowcount:
            raise
        return _read_back()


def next_document_number(document_type: str, *, prefix: str, pad: int = 9) -> str:
    """Internal number, e.g. next_document_number("SALE", prefix="NV") -> "NV-000000001"."""
    return f"{prefix}-{_allocate(document_type):0{pad}d}"


def legal_sequence_key(environment: str, document_code: str) -> str:
    return f"LEGAL:{environment}:{document_code}"


def next_legal_sequential(environment: str, document_code: str) -> int:
    """
    Next legal sequential for (environment, document code).

    Test and production numbering never share a counter.
    """
    return _allocate(legal_sequence_key(environment, document_code))


def format_legal_number(establishment_code: str, emission_point: str, sequential: int) -> str:
    """EEE-PPP-SSSSSSSSS"""
    return f"{establishment_code}-{emission_point}-{sequential:09d}"


# Fiscal documents by type
DOCUMENT_MODELS = {
    DOC_SALE: Sale,
    DOC_CREDIT_NOTE: CreditNote,
}


def document_model(document_type: str):
    model = DOCUMENT_MODELS.get(document_type)
    if model is None:
        raise DocumentSequenceError(f"Unknown document type: {document_type}")
    return model


def get_document(document_type: str, document_id: int):
    return db.session.get(document_model(document_type), document_id)
