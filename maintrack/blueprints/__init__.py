"""
Maintenance Work Order Tracker
Blueprint registry.

Layer contract (all blueprints):
    - Blueprint: parse + validate input, take g.identity, call service,
                 render the Result with api_ok / api_error.
    - NO db.session calls here — all writes owned by services.
    - Role floors are declared with @require_role; business guards live in
      the services.
"""

from maintrack.core.errors import validation


def parse_fields(body: dict, parsers: dict):
    """Parse the subset of *parsers* keys present in *body*.

    *parsers* maps field name → callable(value, field) raising ValueError on
    bad input (see maintrack.utils.helpers), or None to pass the raw value.

    Returns:
        (fields_dict, None) or (None, ServiceError VALIDATION).
    """
    fields = {}
    for name, parser in parsers.items():
        if name not in body:
            continue
        raw = body[name]
        if parser is None:
            fields[name] = raw
            continue
        try:
            fields[name] = parser(raw, name)
        except ValueError as exc:
            return None, validation(str(exc), field=name)
    return fields, None


def parse_bool(value, field: str = "value") -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"{field} must be true or false")


def parse_int(value, field: str = "value"):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field} must be an integer") from exc
