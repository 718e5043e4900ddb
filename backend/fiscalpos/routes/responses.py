# Overview: Shared JSON responses for fiscal emission endpoints.

from flask import current_app, jsonify

from ..services.authority_client import AuthorityUnavailableError
from ..services.emission_service import DocumentNotFoundError, EmissionError, EmissionInProgressError
from ..services.fiscal_context import EnvironmentNotConfirmedError, FiscalContextError
from ..services.quota_service import QuotaDeniedError
from ..services.signing import SigningError


def emission_response(emit, document_id: int):
    """
    Run an emission and map its outcome to HTTP.

    200 with the result for every authority answer (AUTHORIZED, PENDING,
    REJECTED); local refusals answer 4xx before anything is sent; network
    trouble answers 503 with retryable=true.
    """
    try:
        result = emit(document_id)
        return jsonify({"result": result.to_dict()}), 200
    except DocumentNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except EmissionInProgressError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except EnvironmentNotConfirmedError as e:
        return jsonify({"error": str(e), "details": e.details, "confirmation_required": True}), 409
    except QuotaDeniedError as e:
        return jsonify({"error": str(e), "details": e.details}), 402
    except (EmissionError, FiscalContextError) as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except (AuthorityUnavailableError, SigningError) as e:
        current_app.logger.warning("Emission of %s deferred: %s", document_id, e)
        return jsonify({"error": str(e), "retryable": True}), 503
    except Exception:
        current_app.logger.exception("Failed to emit document")
        return jsonify({"error": "Internal server error"}), 500
