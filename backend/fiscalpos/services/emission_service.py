# Overview: Drives invoices and credit notes through authorization and records the outcome.

"""
Fiscal Emission

emit_invoice(sale_id) / emit_credit_note(credit_note_id) -> EmissionResult

FLOW:
1. Local checks (no remote call on failure): document kind, buyer
   identification, source invoice authorized, certificate loaded,
   environment confirmed, quota (invoices only).
2. Snapshot the fiscal context once; the whole attempt uses it.
3. A document that already holds a signed payload for its environment is
   first looked up at the authority (the earlier submission may have
   landed) and then re-sent with the same key and payload.
   Otherwise: take (or reuse) the legal number, build a fresh access key,
   sign, store key + payload, submit.
4. Map the answer: AUTHORIZED -> Authorized, IN_PROCESS -> Pending,
   REJECTED -> Rejected. Network failures leave the status untouched and
   propagate as AuthorityUnavailableError (retryable).

QUOTA: the trial counter moves only on the transition into AUTHORIZED, so
repeated emits of the same document never count twice.

Emission of one document is never concurrent with itself: a second
attempt while one is in flight is refused.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..events import document_issued
from ..models.notifications import DOC_CREDIT_NOTE, DOC_SALE
from fiscalpos import fiscal_state as fs
from fiscalpos.time_utils import today, utcnow
from .access_key import DOC_CODE_CREDIT_NOTE, DOC_CODE_INVOICE, generate_access_key
from .authority_client import AUTHORITY_AUTHORIZED, AUTHORITY_IN_PROCESS, AUTHORITY_REJECTED
from .collaborators import get_authority_gateway, get_signer
from .concurrency import lock_for_update, run_with_retry
from .document_payload import build_credit_note_payload, build_invoice_payload
from .document_service import document_model, format_legal_number, get_document, next_legal_sequential
from .fiscal_context import FiscalContext, get_active_certificate, load_context
from .quota_service import consume_package_document, ensure_can_emit_invoice, record_authorized_invoice
from .register_service import record_credit_note


DOCUMENT_CODES = {
    DOC_SALE: DOC_CODE_INVOICE,
    DOC_CREDIT_NOTE: DOC_CODE_CREDIT_NOTE,
}


class EmissionError(Exception):
    """Raised when a document cannot be sent for authorization."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class DocumentNotFoundError(EmissionError):
    pass


class EmissionInProgressError(EmissionError):
    pass


@dataclass
class EmissionResult:
    success: bool
    state: str
    document_type: str
    document_id: int
    authorization_code: str | None = None
    access_key: str | None = None
    legal_number: str | None = None
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "state": self.state,
            "document_type": self.document_type,
            "document_id": self.document_id,
            "authorization_code": self.authorization_code,
            "access_key": self.access_key,
            "legal_number": self.legal_number,
            "message": self.message,
        }


_inflight: set[tuple[str, int]] = set()
_inflight_lock = threading.Lock()


@contextmanager
def _emission_slot(document_type: str, document_id: int):
    key = (document_type, document_id)
    with _inflight_lock:
        if key in _inflight:
            raise EmissionInProgressError("This document is already being sent", details={"document_id": document_id})
        _inflight.add(key)
    try:
        yield
    finally:
        with _inflight_lock:
            _inflight.discard(key)


def _result(document_type: str, doc, message: str) -> EmissionResult:
    return EmissionResult(
        success=doc.is_authorized,
        state=doc.fiscal_status or fs.UNSUBMITTED,
        document_type=document_type,
        document_id=doc.id,
        authorization_code=doc.authorization_code,
        access_key=doc.access_key,
        legal_number=doc.legal_number,
        message=message,
    )


def _load(document_type: str, document_id: int):
    doc = get_document(document_type, document_id)
    if doc is None:
        raise DocumentNotFoundError("Document not found", details={"document_type": document_type, "document_id": document_id})
    return doc


def _locked(document_type: str, document_id: int):
    model = document_model(document_type)
    return lock_for_update(db.session.query(model).filter_by(id=document_id)).first()


def _validate(document_type: str, doc) -> None:
    if document_type == DOC_SALE:
        if not doc.is_invoice:
            raise EmissionError("Receipts are not sent to the tax authority")
        if doc.customer is None or not doc.customer.can_receive_invoice:
            raise EmissionError("An invoice requires a customer with an identification number")
    else:
        if doc.sale is None or not doc.sale.is_authorized:
            raise EmissionError("The source invoice of this credit note is not authorized")


def _can_resend(doc, ctx: FiscalContext) -> bool:
    """
    A staged submission is reused when it is still valid for its
    environment. PENDING documents always finish where they started.
    """
    if not (doc.signed_payload and doc.access_key and doc.legal_number):
        return False
    if doc.fiscal_status == fs.PENDING:
        return True
    return doc.fiscal_environment == ctx.environment


def _reserve_legal_number(document_type: str, document_id: int, ctx: FiscalContext) -> tuple[str, str, str, int]:
    """
    Give the document its legal number once and keep it across retries.
    A new number is taken only when none exists for the active environment.

    Returns (legal_number, establishment, emission_point, sequential).
    """
    def _op():
        doc = _locked(document_type, document_id)
        if not (doc.legal_number and doc.fiscal_environment == ctx.environment):
            sequential = next_legal_sequential(ctx.environment, DOCUMENT_CODES[document_type])
            doc.legal_number = format_legal_number(ctx.establishment_code, ctx.emission_point, sequential)
            doc.fiscal_environment = ctx.environment
            doc.signed_payload = None
        legal_number = doc.legal_number
        db.session.commit()
        establishment, point, sequential = legal_number.split("-")
        return legal_number, establishment, point, int(sequential)

    return run_with_retry(_op)


def _stage_submission(document_type: str, document_id: int, access_key: str, signed_payload: str) -> None:
    """Persist key and signed payload before sending, without touching the status."""
    def _op():
        doc = _locked(document_type, document_id)
        doc.access_key = access_key
        doc.signed_payload = signed_payload
        db.session.commit()

    run_with_retry(_op)


def _build_payload(document_type: str, doc, ctx: FiscalContext, access_key: str, legal_number: str, issue_date) -> str:
    builder = build_invoice_payload if document_type == DOC_SALE else build_credit_note_payload
    return builder(
        doc,
        ctx,
        access_key=access_key,
        legal_number=legal_number,
        issue_date=issue_date,
        document_code=DOCUMENT_CODES[document_type],
    )


def _record_outcome(document_type: str, document_id: int, response, access_key: str, legal_number: str, signed_payload: str):
    """Apply the authority's answer; returns (document, consume_package)."""
    def _op():
        doc = _locked(document_type, document_id)
        if doc.is_authorized:
            return doc, False

        consume = False
        if response.status == AUTHORITY_AUTHORIZED:
            doc.apply_fiscal_state(fs.Authorized(
                authorization_code=response.authorization_code or access_key,
                access_key=access_key,
                legal_number=legal_number,
                authorized_at=response.authorized_at or utcnow(),
            ))
            doc.signed_payload = signed_payload
            if document_type == DOC_SALE:
                consume = record_authorized_invoice()
            else:
                record_credit_note(doc)
        elif response.status == AUTHORITY_REJECTED:
            doc.apply_fiscal_state(fs.Rejected(reason=response.message or "Rejected by the tax authority"))
        else:
            doc.apply_fiscal_state(fs.Pending(access_key=access_key, legal_number=legal_number))
            doc.signed_payload = signed_payload

        db.session.commit()
        return doc, consume

    return run_with_retry(_op)


def _outcome_message(doc, response) -> str:
    if doc.is_authorized:
        return "Document authorized"
    if doc.fiscal_status == fs.REJECTED:
        return f"Rejected by the tax authority: {doc.rejection_reason}"
    return response.message or "The tax authority is still processing the document; retry later"


def _emit(document_type: str, document_id: int) -> EmissionResult:
    with _emission_slot(document_type, document_id):
        doc = _load(document_type, document_id)
        if doc.is_authorized:
            return _result(document_type, doc, "Document already authorized")

        _validate(document_type, doc)
        ctx = load_context()
        ctx.require_ready()
        if document_type == DOC_SALE:
            ensure_can_emit_invoice()

        gateway = get_authority_gateway()

        if _can_resend(doc, ctx):
            environment = doc.fiscal_environment
            access_key = doc.access_key
            legal_number = doc.legal_number
            signed_payload = doc.signed_payload

            response = gateway.query(access_key, environment)
            if response.status == AUTHORITY_IN_PROCESS:
                response = gateway.submit(signed_payload, access_key, environment)
        else:
            environment = ctx.environment
            legal_number, establishment, point, sequential = _reserve_legal_number(document_type, document_id, ctx)
            issue_date = today()
            access_key = generate_access_key(
                issue_date=issue_date,
                document_code=DOCUMENT_CODES[document_type],
                tax_id=ctx.business_tax_id,
                environment=environment,
                establishment_code=establishment,
                emission_point=point,
                sequential=sequential,
            )
            doc = _load(document_type, document_id)
            payload = _build_payload(document_type, doc, ctx, access_key, legal_number, issue_date)
            signed_payload = get_signer().sign(payload, get_active_certificate())
            _stage_submission(document_type, document_id, access_key, signed_payload)

            response = gateway.submit(signed_payload, access_key, environment)

        doc, consume = _record_outcome(document_type, document_id, response, access_key, legal_number, signed_payload)
        result = _result(document_type, doc, _outcome_message(doc, response))

        current_app.logger.info(
            "%s %s (%s, %s): %s",
            document_type, document_id, environment, legal_number, result.state,
        )

        if doc.is_authorized:
            document_issued.send(
                current_app._get_current_object(),
                document_type=document_type,
                document_id=document_id,
                result=result,
            )
            if consume:
                consume_package_document(access_key)

        return result


def emit_invoice(sale_id: int) -> EmissionResult:
    return _emit(DOC_SALE, sale_id)


def emit_credit_note(credit_note_id: int) -> EmissionResult:
    return _emit(DOC_CREDIT_NOTE, credit_note_id)
