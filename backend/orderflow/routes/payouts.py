# Overview: Flask API routes for job completion and payout review; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..errors import InvalidInputError, OrderflowError
from ..services import payout_service
from ..services.store_client import to_jsonable
from orderflow.time_utils import parse_iso_datetime


payouts_bp = Blueprint("payouts", __name__, url_prefix="/api")


@payouts_bp.post("/jobs/<job_id>/complete")
def complete_job_route(job_id: str):
    """
    Request body (all optional):
    {
        "recipient_id": "...",
        "amount_cents": 7000,
        "completed_at": "2026-03-04T15:00:00Z"
    }

    Returns:
        201: payout entry created
        200: existing entry healed or unchanged
    """
    try:
        data = request.get_json(silent=True) or {}
        amount_cents = data.get("amount_cents")
        if amount_cents is not None:
            try:
                amount_cents = int(amount_cents)
            except (TypeError, ValueError):
                raise InvalidInputError("amount_cents must be an integer")
        try:
            completed_at = parse_iso_datetime(data.get("completed_at"))
        except ValueError:
            raise InvalidInputError("completed_at must be an ISO-8601 datetime")

        result = payout_service.record_completion(
            job_id,
            recipient_id=data.get("recipient_id"),
            amount_cents=amount_cents,
            completed_at=completed_at,
        )
        status = 201 if result.outcome == payout_service.OUTCOME_CREATED else 200
        return jsonify(result.to_dict()), status

    except OrderflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record job completion")
        return jsonify({"error": "Internal server error"}), 500


@payouts_bp.post("/payouts/<payout_id>/review")
def review_payout_route(payout_id: str):
    """
    Request body: {"action": "approve" | "reject", "note": "..."}

    Returns:
        200: entry approved/rejected (or already in that state)
        400: bad action
        404: unknown payout
        409: already decided the other way, or zero entry being approved
    """
    try:
        data = request.get_json(silent=True) or {}
        entry = payout_service.review_payout(payout_id, data.get("action"), note=data.get("note"))
        return jsonify({"entry": to_jsonable(entry)}), 200

    except OrderflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to review payout")
        return jsonify({"error": "Internal server error"}), 500
