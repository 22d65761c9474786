# erp_portal/utils/forms.py
"""
Client-side validation and payload shaping for the student and mark forms.

Everything here runs before any network call: a ValidationError means the
submission is blocked and nothing is sent to the backend.
"""
from erp_portal.utils.errors import ValidationError

EMPTY_MARKERS = ("", "null", "N/A")

STUDENT_REQUIRED_FIELDS = (
    "admission_id",
    "admission_date",
    "first_name",
    "last_name",
    "dob",
    "course_id",
    "batch_id",
    "email",
)


def _as_dict(form_data):
    if hasattr(form_data, "to_dict"):
        return form_data.to_dict(flat=True)
    return dict(form_data)


def check_passwords(password, confirm_password, required=False):
    if required and not password:
        raise ValidationError("Password is required.")
    if (password or confirm_password) and password != confirm_password:
        raise ValidationError("Error: New Password and Confirm Password do not match!")


def build_student_update_payload(form_data, user_id):
    """
    PUT body for /api/students/:id.

    An empty password pair leaves the password untouched: the `password` key is
    dropped so the backend never hashes an empty string. `confirm_password` is
    never sent.
    """
    data = _as_dict(form_data)
    check_passwords(data.get("password", ""), data.get("confirm_password", ""))

    data.pop("confirm_password", None)
    data.pop("csrf_token", None)
    if not data.get("password"):
        data.pop("password", None)

    if user_id is None or user_id == "":
        raise ValidationError("CRITICAL Error: Student's User ID is missing. Cannot update.")
    data["user_id"] = user_id
    return data


def build_student_create_payload(form_data, branch_id=None, academic_session_id=None):
    """POST body for /api/students: empty markers become None, username defaults to email."""
    data = _as_dict(form_data)

    missing = [f for f in STUDENT_REQUIRED_FIELDS if not (data.get(f) or "").strip()]
    if missing:
        raise ValidationError(
            "Please complete all required fields: " + ", ".join(missing)
        )
    check_passwords(data.get("password", ""), data.get("confirm_password", ""), required=True)

    data.pop("confirm_password", None)
    data.pop("csrf_token", None)
    for key, value in data.items():
        if value in EMPTY_MARKERS:
            data[key] = None

    if not data.get("username") and data.get("email"):
        data["username"] = data["email"]
    if branch_id and not data.get("branch_id"):
        data["branch_id"] = branch_id
    if academic_session_id and not data.get("academic_session_id"):
        data["academic_session_id"] = academic_session_id
    return data


def _enrollment_key(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return value


def build_marks_payload(entries, max_marks):
    """
    Validate (enrollment_id, raw_marks) pairs against 0..max_marks.

    Returns the bulk-save body. Raises ValidationError listing the bad
    enrollment ids when any mark is missing or out of range.
    """
    try:
        limit = float(max_marks)
    except (TypeError, ValueError):
        raise ValidationError("This exam has no maximum marks configured.")

    payload = []
    invalid = []
    for enrollment_id, raw in entries:
        try:
            marks = float(raw)
        except (TypeError, ValueError):
            invalid.append(enrollment_id)
            continue
        if marks != marks or marks < 0 or marks > limit:
            invalid.append(enrollment_id)
            continue
        payload.append({"enrollment_id": _enrollment_key(enrollment_id), "marks_obtained": marks})

    if invalid:
        raise ValidationError(
            "Error: Please correct invalid marks (must be between 0 and Max Marks).",
            payload={"invalid": invalid},
        )
    return payload
