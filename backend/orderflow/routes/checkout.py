# Overview: Flask API routes for checkout; parses input and returns JSON responses.

"""
Checkout API Routes

POST /api/checkout
{
    "cart": [{"name": "Deep clean", "price": "200.00", "quantity": 1}],
    "contact": {"email": "a@example.com", "name": "Ada", "phone": "+15555550100"},
    "promo_code": "spring10",            (optional)
    "metadata": {"address_line1": "..."}  (optional)
}

The idempotency key may be sent as the Idempotency-Key header or as
"idempotency_key" in the body.

Returns:
    201: checkout created
    200: replay of an earlier checkout with the same key
    400/409/503/504: see errors.py
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import OrderflowError
from ..services import checkout_service


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


@checkout_bp.post("")
def checkout_route():
    try:
        data = request.get_json(silent=True) or {}
        contact = data.get("contact") or {
            "email": data.get("email"),
            "name": data.get("name"),
            "phone": data.get("phone"),
        }
        idempotency_key = request.headers.get("Idempotency-Key") or data.get("idempotency_key")

        result = checkout_service.checkout(
            cart=data.get("cart") or [],
            contact=contact,
            promo_code=data.get("promo_code"),
            idempotency_key=idempotency_key,
            metadata=data.get("metadata"),
        )
        return jsonify(result.to_dict()), 200 if result.replayed else 201

    except OrderflowError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Checkout failed")
        return jsonify({"error": "Internal server error"}), 500
