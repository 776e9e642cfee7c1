from flask import request

from services.errors import ValidationError

# largest value a signed 64-bit INTEGER column holds
MAX_ID = 2 ** 63 - 1


def json_body() -> dict:
    """The request's JSON object, or {} when no body was sent."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return data


def id_in_range(value) -> bool:
    return 0 < value <= MAX_ID


def parse_id(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field}")
    try:
        parsed = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"Invalid {field}")
    if not id_in_range(parsed):
        raise ValidationError(f"Invalid {field}")
    return parsed
