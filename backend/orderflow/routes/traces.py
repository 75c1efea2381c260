# Overview: Flask API routes for checkout traces (operator diagnostics).

from flask import Blueprint, jsonify, current_app

from ..services import trace_service


traces_bp = Blueprint("traces", __name__, url_prefix="/api/traces")


@traces_bp.get("/<trace_id>")
def get_trace_route(trace_id: str):
    try:
        trace = trace_service.get_trace(trace_id)
        if not trace["stages"] and not trace["failures"]:
            return jsonify({"error": f"Trace {trace_id} not found", "code": "NOT_FOUND"}), 404
        return jsonify(trace), 200
    except Exception:
        current_app.logger.exception("Failed to load trace")
        return jsonify({"error": "Internal server error"}), 500
