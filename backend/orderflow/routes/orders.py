# Overview: Flask API routes for order cancellation; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..errors import OrderflowError
from ..services import checkout_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("/<order_ref>/cancel")
def cancel_order_route(order_ref: str):
    """
    Cancel an unpaid order and its dispatch job.

    Request body (optional): {"reason": "customer request"}

    Returns:
        200: order cancelled (or already cancelled)
        404: unknown order
        409: order already paid
    """
    try:
        data = request.get_json(silent=True) or {}
        result = checkout_service.cancel_checkout(order_ref, reason=data.get("reason"))
        return jsonify(result), 200

    except OrderflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Order cancellation failed")
        return jsonify({"error": "Internal server error"}), 500
