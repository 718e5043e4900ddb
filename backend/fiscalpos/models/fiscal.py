from __future__ import annotations

from ..extensions import db
from fiscalpos.time_utils import to_iso_date, to_utc_z


ENV_TEST = "test"
ENV_PRODUCTION = "production"
VALID_ENVIRONMENTS = (ENV_TEST, ENV_PRODUCTION)

PLAN_TRIAL = "TRIAL"
PLAN_TIME_BOUND = "TIME_BOUND"
PLAN_DOCUMENT_PACKAGE = "DOCUMENT_PACKAGE"
PLAN_LIFETIME = "LIFETIME"
VALID_PLAN_KINDS = {PLAN_TRIAL, PLAN_TIME_BOUND, PLAN_DOCUMENT_PACKAGE, PLAN_LIFETIME}


class FiscalSettings(db.Model):
    """
    Business identity and the active tax environment (single row).

    WHY: The environment and its confirmation flag are process-wide state
    that only an explicit operator action may change. Keeping them in one
    locked row means every emission reads one consistent snapshot.
    """
    __tablename__ = "fiscal_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    business_tax_id = db.Column(db.String(13), nullable=False, default="9999999999999")
    legal_name = db.Column(db.String(255), nullable=False, default="")
    trade_name = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    establishment_code = db.Column(db.String(3), nullable=False, default="001")
    emission_point = db.Column(db.String(3), nullable=False, default="001")
    tax_regime = db.Column(db.String(64), nullable=True)

    environment = db.Column(db.String(16), nullable=False, default=ENV_TEST)
    environment_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    environment_confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "business_tax_id": self.business_tax_id,
            "legal_name": self.legal_name,
            "trade_name": self.trade_name,
            "address": self.address,
            "establishment_code": self.establishment_code,
            "emission_point": self.emission_point,
            "tax_regime": self.tax_regime,
            "environment": self.environment,
            "environment_confirmed": self.environment_confirmed,
            "environment_confirmed_at": to_utc_z(self.environment_confirmed_at) if self.environment_confirmed_at else None,
            "updated_at": to_utc_z(self.updated_at),
        }


class SigningCertificate(db.Model):
    """The single active signing certificate (PKCS#12 blob + password)."""
    __tablename__ = "signing_certificates"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    filename = db.Column(db.String(255), nullable=False)
    content = db.Column(db.LargeBinary, nullable=False)
    password = db.Column(db.String(255), nullable=False)
    loaded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "filename": self.filename,
            "size_bytes": len(self.content or b""),
            "loaded_at": to_utc_z(self.loaded_at),
        }


class SubscriptionState(db.Model):
    """
    Cached entitlement to issue invoices (single row).

    expires_on is set only for TIME_BOUND plans and remaining_documents only
    for DOCUMENT_PACKAGE plans.
    """
    __tablename__ = "subscription_state"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    is_authorized = db.Column(db.Boolean, nullable=False, default=False)
    plan_kind = db.Column(db.String(32), nullable=False, default=PLAN_TRIAL)
    expires_on = db.Column(db.Date, nullable=True)
    remaining_documents = db.Column(db.Integer, nullable=True)

    free_invoices_used = db.Column(db.Integer, nullable=False, default=0)
    free_invoice_allowance = db.Column(db.Integer, nullable=True)

    message = db.Column(db.String(255), nullable=True)
    last_validated_on = db.Column(db.Date, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "is_authorized": self.is_authorized,
            "plan_kind": self.plan_kind,
            "expires_on": to_iso_date(self.expires_on),
            "remaining_documents": self.remaining_documents,
            "free_invoices_used": self.free_invoices_used,
            "free_invoice_allowance": self.free_invoice_allowance,
            "message": self.message,
            "last_validated_on": to_iso_date(self.last_validated_on),
        }


class DocumentSequence(db.Model):
    """
    Atomic document sequences.

    WHY: Prevent race conditions when generating internal numbers (sales,
    credit notes) and legal sequentials (per environment and document code).
    """
    __tablename__ = "document_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sequence_key = db.Column(db.String(64), nullable=False, unique=True, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sequence_key": self.sequence_key,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
