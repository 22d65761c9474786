# erp_portal/utils/validators.py
import re

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def to_uuid(value):
    """Return the trimmed UUID string, or None when `value` is not one."""
    if not isinstance(value, str) or not value.strip():
        return None
    value = value.strip()
    return value if UUID_RE.match(value) else None


def is_valid_uuid(value):
    return to_uuid(value) is not None
