"""Read side of the service catalog, plus the admin edits."""

from models import db
from models.service import Service
from core.errors import ServiceNotFound, ValidationFailed, Conflict
from utils.validation import text_field


def list_services(include_inactive=False):
    q = Service.query
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return q.order_by(Service.price.asc(), Service.name.asc()).all()


def get_service(service_id: str) -> Service:
    service = db.session.get(Service, service_id) if service_id else None
    if not service or not service.is_active:
        raise ServiceNotFound()
    return service


def _clean_service_fields(data: dict, partial: bool) -> dict:
    out = {}
    errors = {}

    if "name" in data or not partial:
        name = text_field(data, "name")
        if not name:
            errors["name"] = "Name is required"
        out["name"] = name

    if "price" in data or not partial:
        price = data.get("price")
        if isinstance(price, bool) or not isinstance(price, int) or price < 0:
            errors["price"] = "Price must be a non-negative integer (minor units)"
        out["price"] = price

    if "features" in data:
        features = data.get("features") or []
        if not isinstance(features, list) or not all(isinstance(f, str) for f in features):
            errors["features"] = "Features must be a list of strings"
        else:
            out["features"] = [f.strip() for f in features if f.strip()]

    for field in ("description", "duration", "image_url"):
        if field in data:
            out[field] = text_field(data, field) or None

    for flag in ("is_bookable", "has_details_page", "is_active"):
        if flag in data:
            out[flag] = bool(data.get(flag))

    if errors:
        raise ValidationFailed(details=errors)
    return out


def create_service(data: dict) -> Service:
    service_id = text_field(data, "id").lower()
    if not service_id:
        raise ValidationFailed(details={"id": "Service id (slug) is required"})
    if db.session.get(Service, service_id):
        raise Conflict("Service id already exists")

    fields = _clean_service_fields(data, partial=False)
    fields.setdefault("features", [])
    service = Service(id=service_id, **fields)
    db.session.add(service)
    db.session.commit()
    return service


def update_service(service_id: str, data: dict) -> Service:
    service = db.session.get(Service, service_id)
    if not service:
        raise ServiceNotFound()
    for key, value in _clean_service_fields(data, partial=True).items():
        setattr(service, key, value)
    db.session.commit()
    return service
