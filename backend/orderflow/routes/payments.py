# Overview: Flask API routes for payment confirmation and processor webhooks; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..errors import BadRequestError, OrderflowError
from ..services import payment_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/confirm")
def confirm_payment_route():
    """
    Reconcile a processor session with its order (called from the success page).

    Request body: {"session_id": "cs_..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        session_id = data.get("session_id") or request.args.get("session_id")
        if not session_id:
            raise BadRequestError("session_id is required")

        return jsonify(payment_service.confirm_payment(session_id)), 200

    except OrderflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Payment confirmation failed")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/webhook")
def payment_webhook_route():
    """
    Signed processor events (Stripe-Signature header, raw JSON body).

    Returns:
        200: event acknowledged (handled or ignored)
        400: missing or invalid signature
        503: signing secret not configured
    """
    try:
        event = payment_service.verify_webhook(
            request.get_data(),
            request.headers.get("Stripe-Signature"),
        )
        return jsonify(payment_service.handle_webhook_event(event)), 200

    except OrderflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Payment webhook failed")
        return jsonify({"error": "Internal server error"}), 500
