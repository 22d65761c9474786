from erp_portal.utils.fees import calculate_total_fee, fee_account_summary, fee_breakdown

STRUCTURE = {
    "admission_fee": 500,
    "registration_fee": 200,
    "examination_fee": 100,
    "has_transport": True,
    "transport_fee": 50,
    "course_duration_months": 6,
}


def test_total_with_transport():
    assert calculate_total_fee(STRUCTURE) == "1100.00"


def test_transport_ignored_without_flag():
    structure = dict(STRUCTURE, has_transport=False)
    assert calculate_total_fee(structure) == "800.00"


def test_hostel_multiplied_by_duration():
    structure = dict(STRUCTURE, has_hostel=True, hostel_fee="1000.50")
    assert calculate_total_fee(structure) == "7103.00"


def test_missing_or_zero_duration_counts_as_one_month():
    base = {"admission_fee": 100, "has_transport": True, "transport_fee": 40}
    assert calculate_total_fee(base) == "140.00"
    assert calculate_total_fee(dict(base, course_duration_months=0)) == "140.00"
    assert calculate_total_fee(dict(base, course_duration_months="abc")) == "140.00"


def test_string_amounts_and_missing_fields():
    assert calculate_total_fee({"admission_fee": "10.25", "registration_fee": None}) == "10.25"
    assert calculate_total_fee({}) == "0.00"


def test_breakdown_lines():
    lines = fee_breakdown(STRUCTURE)
    assert lines[0] == ("Admission Fee", 500.0)
    assert lines[-1] == ("Transport Fee (x6 mos)", 300.0)
    assert len(lines) == 4


def test_account_summary_defaults_to_zero():
    assert fee_account_summary(None) == {"total_fees": 0.0, "fees_paid": 0.0, "balance_due": 0.0}
    summary = fee_account_summary({"total_fees": "1000", "fees_paid": 250, "balance_due": "750"})
    assert summary["balance_due"] == 750.0
