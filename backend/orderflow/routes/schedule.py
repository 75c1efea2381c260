# Overview: Flask API routes for scheduling; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..errors import BadRequestError, OrderflowError
from ..services import schedule_service


schedule_bp = Blueprint("schedule", __name__, url_prefix="/api/schedule")


@schedule_bp.post("")
def schedule_route():
    """
    Request body:
    {
        "order_id": "ORD-...",          (id, order code or payment session id)
        "date": "2026-03-04",
        "time_window": "2:00 PM - 5:00 PM"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        order_ref = data.get("order_id") or data.get("order_code") or data.get("session_id")
        if not order_ref or not data.get("date") or not data.get("time_window"):
            raise BadRequestError("order_id, date and time_window are required")

        result = schedule_service.schedule(order_ref, data["date"], data["time_window"])
        return jsonify(result.to_dict()), 200

    except OrderflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Schedule update failed")
        return jsonify({"error": "Internal server error"}), 500
