import re

from core.errors import ValidationFailed

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_NON_DIGIT = re.compile(r"\D")


def is_valid_email(email: str) -> bool:
    return isinstance(email, str) and len(email) <= 255 and bool(_EMAIL.match(email))


def text_field(data: dict, key: str) -> str:
    """Stripped string from a JSON body; "" when absent. Any other type is a 400."""
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationFailed(details={key: "Must be a string."})
    return value.strip()


def validate_booking_details(data: dict, require_exam=False) -> dict:
    """
    Cleans the contact details captured before payment.
    Raises ValidationFailed with one message per bad field.
    """
    data = data or {}
    errors = {}

    name = text_field(data, "name")
    if len(name) < 2:
        errors["name"] = "Name must be at least 2 characters."

    email = text_field(data, "email").lower()
    if not is_valid_email(email):
        errors["email"] = "Invalid email address."

    phone = text_field(data, "phone")
    if len(_NON_DIGIT.sub("", phone)) < 10:
        errors["phone"] = "Phone number must be at least 10 digits."

    exam_applied = text_field(data, "exam_applied") or None
    if require_exam and (not exam_applied or len(exam_applied) < 2):
        errors["exam_applied"] = "Please specify exams applied for."

    previous_attempts = data.get("previous_attempts")
    if previous_attempts in (None, ""):
        previous_attempts = None
    else:
        try:
            previous_attempts = int(str(previous_attempts).strip())
        except ValueError:
            errors["previous_attempts"] = "Previous attempts must be a whole number."
        else:
            if previous_attempts < 0:
                errors["previous_attempts"] = "Previous attempts cannot be negative."

    if errors:
        raise ValidationFailed(details=errors)

    return {
        "name": name,
        "email": email,
        "phone": phone,
        "exam_applied": exam_applied,
        "previous_attempts": previous_attempts,
    }
