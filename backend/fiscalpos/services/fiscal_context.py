# Overview: Active tax environment, its confirmation gate, and the signing certificate.

"""
Fiscal Context

WHY: Whether a document carries legal weight depends on the active
environment (test or production). The operator must confirm the
environment they see before anything is sent, and any change of
environment clears that confirmation.

FiscalContext is an immutable snapshot. Emission takes one at its start
and never re-reads the settings mid-call, so a document finishes in the
environment it started with.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ..extensions import db
from ..models import FiscalSettings, SigningCertificate
from ..models.fiscal import VALID_ENVIRONMENTS
from fiscalpos.time_utils import utcnow
from .concurrency import get_singleton, run_with_retry


class FiscalContextError(Exception):
    """Raised for invalid fiscal settings or certificate input."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class EnvironmentNotConfirmedError(Exception):
    """The operator has not confirmed the active environment."""
    def __init__(self, environment: str):
        super().__init__(f"Confirm the '{environment}' environment before emitting documents")
        self.environment = environment
        self.details = {"environment": environment}


@dataclass(frozen=True)
class FiscalContext:
    environment: str
    confirmed: bool
    certificate_loaded: bool
    business_tax_id: str
    legal_name: str
    trade_name: str | None
    address: str | None
    establishment_code: str
    emission_point: str

    def require_ready(self) -> None:
        if not self.certificate_loaded:
            raise FiscalContextError("No signing certificate loaded")
        if not self.confirmed:
            raise EnvironmentNotConfirmedError(self.environment)

    def to_dict(self) -> dict:
        return {
            "environment": self.environment,
            "environment_confirmed": self.confirmed,
            "certificate_loaded": self.certificate_loaded,
            "business_tax_id": self.business_tax_id,
            "legal_name": self.legal_name,
            "trade_name": self.trade_name,
            "establishment_code": self.establishment_code,
            "emission_point": self.emission_point,
        }


def get_fiscal_settings(*, lock: bool = False) -> FiscalSettings:
    return get_singleton(FiscalSettings, lock=lock)


def get_active_certificate() -> SigningCertificate | None:
    return db.session.query(SigningCertificate).order_by(SigningCertificate.id.desc()).first()


def load_context() -> FiscalContext:
    settings = get_fiscal_settings()
    return FiscalContext(
        environment=settings.environment,
        confirmed=bool(settings.environment_confirmed),
        certificate_loaded=get_active_certificate() is not None,
        business_tax_id=settings.business_tax_id,
        legal_name=settings.legal_name,
        trade_name=settings.trade_name,
        address=settings.address,
        establishment_code=settings.establishment_code,
        emission_point=settings.emission_point,
    )


def _normalize_environment(environment: str) -> str:
    value = (environment or "").strip().lower()
    if value not in VALID_ENVIRONMENTS:
        raise FiscalContextError(
            "Environment must be 'test' or 'production'",
            details={"environment": environment},
        )
    return value


def change_environment(environment: str) -> FiscalSettings:
    """
    Switch the active environment. A real change always clears the
    confirmation; setting the current value again changes nothing.
    """
    value = _normalize_environment(environment)

    def _op():
        settings = get_fiscal_settings(lock=True)
        if settings.environment != value:
            settings.environment = value
            settings.environment_confirmed = False
            settings.environment_confirmed_at = None
        db.session.commit()
        return settings

    return run_with_retry(_op)


def confirm_environment(environment: str) -> FiscalSettings:
    """
    Record the operator's acknowledgment of the active environment.

    The operator echoes the environment they were shown; a mismatch means
    the screen was stale and is rejected.
    """
    value = _normalize_environment(environment)

    def _op():
        settings = get_fiscal_settings(lock=True)
        if settings.environment != value:
            raise FiscalContextError(
                "The confirmed environment does not match the active one",
                details={"active": settings.environment, "confirmed": value},
            )
        settings.environment_confirmed = True
        settings.environment_confirmed_at = utcnow()
        db.session.commit()
        return settings

    return run_with_retry(_op)


def load_certificate(content: bytes, password: str, filename: str) -> SigningCertificate:
    """Store the signing certificate, replacing the previous one."""
    if not content:
        raise FiscalContextError("Certificate file is empty")
    if not password:
        raise FiscalContextError("Certificate password is required")
    filename = (filename or "").strip() or "certificate.p12"

    def _op():
        db.session.query(SigningCertificate).delete()
        certificate = SigningCertificate(filename=filename, content=content, password=password, loaded_at=utcnow())
        db.session.add(certificate)
        db.session.commit()
        return certificate

    return run_with_retry(_op)


_THREE_DIGITS = re.compile(r"^\d{3}$")
_TAX_ID = re.compile(r"^\d{13}$")

_EDITABLE_FIELDS = ("business_tax_id", "legal_name", "trade_name", "address", "establishment_code", "emission_point", "tax_regime")


def update_business_settings(data: dict) -> FiscalSettings:
    """Update business identity fields; the environment is changed only via change_environment."""
    updates = {key: data[key] for key in _EDITABLE_FIELDS if key in data}

    if "business_tax_id" in updates and not _TAX_ID.match(str(updates["business_tax_id"] or "")):
        raise FiscalContextError("business_tax_id must be 13 digits")
    for key in ("establishment_code", "emission_point"):
        if key in updates and not _THREE_DIGITS.match(str(updates[key] or "")):
            raise FiscalContextError(f"{key} must be 3 digits")
    if "legal_name" in updates and not (updates["legal_name"] or "").strip():
        raise FiscalContextError("legal_name cannot be empty")

    def _op():
        settings = get_fiscal_settings(lock=True)
        for key, value in updates.items():
            setattr(settings, key, value.strip() if isinstance(value, str) else value)
        db.session.commit()
        return settings

    return run_with_retry(_op)
