"""
Outbound collaborators, one per app, kept in app.extensions.

create_app() accepts replacements (tests pass fakes); otherwise the httpx
implementations are built from config on first use.
"""

from __future__ import annotations

from flask import current_app

from .authority_client import HttpAuthorityGateway
from .mailer import HttpMailer
from .signing import HttpDocumentSigner
from .subscription_client import HttpSubscriptionClient


AUTHORITY_KEY = "fiscalpos.authority"
SIGNER_KEY = "fiscalpos.signer"
MAILER_KEY = "fiscalpos.mailer"
SUBSCRIPTION_KEY = "fiscalpos.subscription"


def _build_authority(config):
    return HttpAuthorityGateway(config["AUTHORITY_GATEWAY_URL"], timeout=config["AUTHORITY_TIMEOUT_SECONDS"])


def _build_signer(config):
    return HttpDocumentSigner(config["SIGNING_SERVICE_URL"], timeout=config["AUTHORITY_TIMEOUT_SECONDS"])


def _build_mailer(config):
    return HttpMailer(config["EMAIL_SERVICE_URL"], config["EMAIL_SERVICE_API_KEY"], timeout=config["EMAIL_TIMEOUT_SECONDS"])


def _build_subscription(config):
    return HttpSubscriptionClient(config["SUBSCRIPTION_API_URL"], config["SUBSCRIPTION_API_KEY"])


_BUILDERS = {
    AUTHORITY_KEY: _build_authority,
    SIGNER_KEY: _build_signer,
    MAILER_KEY: _build_mailer,
    SUBSCRIPTION_KEY: _build_subscription,
}


def _get(key: str):
    app = current_app._get_current_object()
    if app.extensions.get(key) is None:
        app.extensions[key] = _BUILDERS[key](app.config)
    return app.extensions[key]


def get_authority_gateway():
    return _get(AUTHORITY_KEY)


def get_signer():
    return _get(SIGNER_KEY)


def get_mailer():
    return _get(MAILER_KEY)


def get_subscription_client():
    return _get(SUBSCRIPTION_KEY)
