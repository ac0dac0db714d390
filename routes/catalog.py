from datetime import datetime, timedelta

from flask import Blueprint, request, jsonify

from core import availability, catalog

catalog_bp = Blueprint("catalog", __name__)


def _parse_day(value: str):
    # Expect YYYY-MM-DD
    day = datetime.fromisoformat(value)
    return datetime(day.year, day.month, day.day)


# ---------- PUBLIC: services ----------
@catalog_bp.get("/services")
def list_services():
    return jsonify([s.to_dict() for s in catalog.list_services()]), 200


@catalog_bp.get("/services/<service_id>")
def get_service(service_id: str):
    return jsonify(catalog.get_service(service_id).to_dict()), 200


# ---------- PUBLIC: open slots ----------
@catalog_bp.get("/services/<service_id>/slots")
def list_slots(service_id: str):
    # optional filters: from, to (YYYY-MM-DD, "to" inclusive)
    start = end = None
    try:
        if request.args.get("from"):
            start = _parse_day(request.args["from"])
        if request.args.get("to"):
            end = _parse_day(request.args["to"]) + timedelta(days=1)
    except ValueError:
        return jsonify(error="Invalid date. Use YYYY-MM-DD"), 400

    rows = availability.list_slots(service_id, start=start, end=end)
    return jsonify([slot.to_dict(held=held) for slot, held in rows]), 200
