# erp_portal/utils/fees.py
"""Fee structure arithmetic shared by the student forms, list and fee pages."""


def _amount(value):
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _duration(structure):
    try:
        months = int(float(structure.get("course_duration_months")))
    except (TypeError, ValueError):
        months = 0
    return months or 1


def calculate_total_fee(structure):
    """
    admission + registration + examination, plus transport and hostel
    (monthly fee x course duration) when the structure includes them.

    Returns the total as a string with two decimals, e.g. "1100.00".
    """
    duration = _duration(structure)
    total = (
        _amount(structure.get("admission_fee"))
        + _amount(structure.get("registration_fee"))
        + _amount(structure.get("examination_fee"))
    )
    if structure.get("has_transport"):
        total += _amount(structure.get("transport_fee")) * duration
    if structure.get("has_hostel"):
        total += _amount(structure.get("hostel_fee")) * duration
    return f"{total:.2f}"


def fee_breakdown(structure):
    """(label, amount) lines in the order the fee panels show them."""
    duration = _duration(structure)
    lines = [
        ("Admission Fee", _amount(structure.get("admission_fee"))),
        ("Registration Fee", _amount(structure.get("registration_fee"))),
        ("Examination Fee", _amount(structure.get("examination_fee"))),
    ]
    if structure.get("has_transport"):
        lines.append((f"Transport Fee (x{duration} mos)", _amount(structure.get("transport_fee")) * duration))
    if structure.get("has_hostel"):
        lines.append((f"Hostel Fee (x{duration} mos)", _amount(structure.get("hostel_fee")) * duration))
    return lines


def fee_account_summary(summary):
    """Normalise the backend's {total_fees, fees_paid, balance_due} block."""
    summary = summary or {}
    return {
        "total_fees": _amount(summary.get("total_fees")),
        "fees_paid": _amount(summary.get("fees_paid")),
        "balance_due": _amount(summary.get("balance_due")),
    }
