import base64
import os

import bcrypt
import pytest

from erp_portal.extensions import mail
from erp_portal.utils.cascade import ACADEMICS_API
from erp_portal.utils.config_broadcaster import CONFIG_ENDPOINT, SETTINGS_CACHE_KEY
from erp_portal.utils.email import generate_reset_token
from erp_portal.utils.page_session import TOKEN_KEY
from tests.conftest import login_as

LOGIN_OK = {
    "token": "new-token",
    "role": "Admin",
    "activeSessionId": "sess-1",
    "userBranchId": "branch-1",
    "username": "office",
}

STUDENT = {
    "student_id": 5,
    "user_id": "u-5",
    "first_name": "Asha",
    "last_name": "Rao",
    "admission_id": "A-5",
    "course_id": 1,
    "batch_id": 11,
    "email": "asha@x.test",
    "status": "Active",
    "total_fees_due": 1100,
}


# ----------------------------------------------------------------------
# Login gate and auth
# ----------------------------------------------------------------------
def test_protected_page_redirects_to_login(client):
    resp = client.get("/students")
    assert resp.status_code == 302
    assert "/auth/login" in resp.headers["Location"]
    assert "next=" in resp.headers["Location"]


def test_login_page_renders_with_default_theme(client, http):
    resp = client.get("/auth/login")
    assert resp.status_code == 200
    assert b"Enterprise ERP" in resp.data
    assert http.called("GET", CONFIG_ENDPOINT)


def test_login_success_stores_session(client, http):
    http.add("POST", "/api/auth/login", LOGIN_OK)

    resp = client.post("/auth/login", data={"username": "office", "password": "pw"})

    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/")
    assert http.called("POST", "/api/auth/login")[0]["json"] == {"username": "office", "password": "pw"}
    with client.session_transaction() as sess:
        assert sess[TOKEN_KEY] == "new-token"
        assert sess["active_branch_id"] == "branch-1"


def test_login_follows_safe_next(client, http):
    http.add("POST", "/api/auth/login", LOGIN_OK)
    resp = client.post("/auth/login?next=/students", data={"username": "office", "password": "pw"})
    assert resp.headers["Location"].endswith("/students")


def test_login_ignores_external_next(client, http):
    http.add("POST", "/api/auth/login", LOGIN_OK)
    resp = client.post("/auth/login?next=http://evil.test/", data={"username": "office", "password": "pw"})
    assert "evil.test" not in resp.headers["Location"]


def test_login_student_keeps_student_id(client, http):
    http.add("POST", "/api/auth/login", dict(LOGIN_OK, role="Student", **{"user-id": "42"}))
    client.post("/auth/login", data={"username": "asha", "password": "pw"})
    with client.session_transaction() as sess:
        assert sess["student-id"] == "42"


def test_login_with_missing_fields_is_rejected(client, http):
    http.add("POST", "/api/auth/login", {"token": "t", "role": "Admin"})

    resp = client.post("/auth/login", data={"username": "office", "password": "pw"})

    assert resp.status_code == 200
    assert b"server response is missing required data" in resp.data
    with client.session_transaction() as sess:
        assert TOKEN_KEY not in sess


def test_login_failure_shows_backend_message(client, http):
    http.add("POST", "/api/auth/login", {"message": "Invalid username or password."}, status=401)
    resp = client.post("/auth/login", data={"username": "office", "password": "bad"})
    assert resp.status_code == 200
    assert b"Invalid username or password." in resp.data


def test_users_login_lands_on_mark_entry(client, http):
    http.add("POST", "/api/users/login", {"token": "exam-token"})
    resp = client.post("/auth/users-login", data={"email": "t@x.test", "password": "pw"})
    assert resp.headers["Location"].endswith("/mark-entry")
    with client.session_transaction() as sess:
        assert sess["user-role"] == "Teacher"


def test_activate_requires_matching_passwords(client, http):
    resp = client.post("/auth/activate", data={
        "admission_id": "A-1", "email": "a@x.test", "password": "one", "confirm_password": "two",
    })
    assert resp.status_code == 200
    assert not http.called("POST", "/api/auth/activate-student")


def test_activate_posts_to_backend(client, http):
    http.add("POST", "/api/auth/activate-student", {"message": "Account activated."})
    resp = client.post("/auth/activate", data={
        "admission_id": "A-1", "email": "a@x.test", "password": "pw", "confirm_password": "pw",
    })
    assert resp.status_code == 302
    assert http.called("POST", "/api/auth/activate-student")[0]["json"] == {
        "admission_id": "A-1", "email": "a@x.test", "password": "pw",
    }


def test_logout_clears_session(admin_client):
    admin_client.get("/auth/logout")
    with admin_client.session_transaction() as sess:
        assert TOKEN_KEY not in sess


def test_unauthorized_backend_call_forces_logout(admin_client, http):
    http.add("GET", "/api/students", {"message": "jwt expired"}, status=401)

    resp = admin_client.get("/students")

    assert resp.status_code == 302
    assert "/auth/login" in resp.headers["Location"]
    with admin_client.session_transaction() as sess:
        assert TOKEN_KEY not in sess
        assert "user-role" not in sess
    assert not http.responses[-1].body_read


def test_unknown_role_is_logged_out(client):
    login_as(client, role="Ghost")
    resp = client.get("/")
    assert resp.status_code == 302
    with client.session_transaction() as sess:
        assert TOKEN_KEY not in sess


def test_student_cannot_open_admin_pages(student_client):
    resp = student_client.get("/students")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/")


def test_home_shows_student_cards(student_client):
    resp = student_client.get("/")
    assert resp.status_code == 200
    assert b"My Attendance" in resp.data
    assert b"/students/42/fees" in resp.data


# ----------------------------------------------------------------------
# Password reset
# ----------------------------------------------------------------------
def test_forgot_password_mails_signed_link(client, http):
    http.add("POST", "/api/auth/forgot-password", {"message": "Reset link sent.", "token": "backend-tok"})

    with mail.record_messages() as outbox:
        resp = client.post("/auth/forgot-password", data={"email": "asha@x.test"})

    assert resp.status_code == 302
    assert len(outbox) == 1
    assert "/auth/reset-password/" in outbox[0].html


def test_forgot_password_without_backend_token_sends_nothing(client, http):
    http.add("POST", "/api/auth/forgot-password", {"message": "If email exists, link sent."})
    with mail.record_messages() as outbox:
        resp = client.post("/auth/forgot-password", data={"email": "asha@x.test"})
    assert resp.status_code == 302
    assert outbox == []


def test_forgot_password_mail_failure_is_500(client, http, monkeypatch):
    http.add("POST", "/api/auth/forgot-password", {"token": "backend-tok"})

    def broken(msg):
        raise OSError("connection refused")

    monkeypatch.setattr(mail, "send", broken)

    resp = client.post("/auth/forgot-password", data={"email": "asha@x.test"})

    assert resp.status_code == 500
    assert b"Failed to send notification email" in resp.data


def test_reset_password_rejects_bad_token(client):
    resp = client.get("/auth/reset-password/not-a-token")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/auth/forgot-password")


def test_reset_password_sends_backend_token(app, client, http):
    http.add("POST", "/api/auth/reset-password", {"message": "Password updated."})
    token = generate_reset_token(app.config["SECRET_KEY"], "asha@x.test", "backend-tok")

    resp = client.post(f"/auth/reset-password/{token}", data={"password": "new", "confirm_password": "new"})

    assert resp.status_code == 302
    assert http.called("POST", "/api/auth/reset-password")[0]["json"] == {"token": "backend-tok", "password": "new"}


# ----------------------------------------------------------------------
# Students
# ----------------------------------------------------------------------
def course_routes(http):
    http.add("GET", f"{ACADEMICS_API}/courses", [{"id": 1, "course_name": "Science", "course_code": "SC"}])
    http.add("GET", f"{ACADEMICS_API}/courses/1/batches", [{"id": 11, "batch_name": "Morning"}])
    http.add("GET", f"{ACADEMICS_API}/courses/1/subjects", [{"subject_name": "Physics", "subject_code": "PHY"}])
    http.add("GET", f"{ACADEMICS_API}/fees/structures/find", {
        "id": 3, "admission_fee": 500, "registration_fee": 200, "examination_fee": 100,
        "has_transport": True, "transport_fee": 50, "course_duration_months": 6,
    })


def test_student_list_renders_enriched_rows(admin_client, http):
    course_routes(http)
    http.add("GET", "/api/students", [STUDENT])

    resp = admin_client.get("/students")

    assert resp.status_code == 200
    assert b"Asha Rao" in resp.data
    assert b"PHY" in resp.data
    assert len(http.called("GET", f"{ACADEMICS_API}/courses/1/subjects")) == 1


def test_student_list_shows_fetch_error(admin_client, http):
    http.add("GET", "/api/students", {"message": "db down"}, status=500)
    resp = admin_client.get("/students")
    assert resp.status_code == 200
    assert b"Failed to load student data: db down" in resp.data


def test_export_students_csv(admin_client, http):
    http.add("GET", "/api/students", [STUDENT])

    resp = admin_client.get("/students/export.csv")

    assert resp.status_code == 200
    assert resp.mimetype == "text/csv"
    lines = resp.data.decode("utf-8").splitlines()
    assert lines[0].startswith("Enrollment No,Admission ID,Name")
    assert "Asha Rao" in lines[1]


def test_edit_with_mismatched_passwords_sends_nothing(admin_client, http):
    course_routes(http)
    resp = admin_client.post("/students/5/edit", data={
        "user_id": "u-5", "first_name": "Asha", "course_id": "1", "batch_id": "11",
        "password": "one", "confirm_password": "two",
    })

    assert resp.status_code == 200
    assert b"Confirm Password do not match" in resp.data
    assert not http.called("PUT", "/api/students/5")


def test_edit_with_empty_password_omits_it(admin_client, http):
    http.add("PUT", "/api/students/5", {"message": "ok"})

    resp = admin_client.post("/students/5/edit", data={
        "user_id": "u-5", "first_name": "Asha", "password": "", "confirm_password": "",
    })

    assert resp.status_code == 302
    sent = http.called("PUT", "/api/students/5")[0]["json"]
    assert "password" not in sent
    assert "confirm_password" not in sent
    assert sent["user_id"] == "u-5"


def test_edit_page_replays_saved_course_and_batch(admin_client, http):
    course_routes(http)
    http.add("GET", "/api/students/5", STUDENT)

    resp = admin_client.get("/students/5/edit")

    assert resp.status_code == 200
    assert b"Morning" in resp.data
    assert http.called("GET", f"{ACADEMICS_API}/fees/structures/find")[0]["params"] == {
        "course_id": "1", "batch_id": "11",
    }


def test_add_student_posts_normalised_payload(admin_client, http):
    http.add("POST", "/api/students", {"student_id": 9})
    resp = admin_client.post("/students/add", data={
        "admission_id": "A-9", "admission_date": "2024-06-01", "first_name": "Ravi", "last_name": "K",
        "dob": "2010-01-01", "course_id": "1", "batch_id": "11", "email": "ravi@x.test",
        "password": "pw", "confirm_password": "pw", "phone_number": "",
    })

    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/students/9")
    sent = http.called("POST", "/api/students")[0]["json"]
    assert sent["phone_number"] is None
    assert sent["username"] == "ravi@x.test"
    assert sent["branch_id"] == "branch-1"


def test_delete_student(admin_client, http):
    http.add("DELETE", "/api/students/5", {"message": "deactivated"})
    resp = admin_client.post("/students/5/delete", data={"name": "Asha"})
    assert resp.status_code == 302
    assert http.called("DELETE", "/api/students/5")


def test_view_missing_student_redirects(admin_client, http):
    http.add("GET", "/api/students/404", {"message": "Student not found"}, status=404)
    resp = admin_client.get("/students/404")
    assert resp.status_code == 302


def test_student_sees_own_fees_only(student_client, http):
    course_routes(http)
    http.add("GET", "/api/students/42", dict(STUDENT, student_id=42))

    assert student_client.get("/students/42/fees").status_code == 200
    assert student_client.get("/students/7/fees").status_code == 302


def test_cascade_course_endpoint_echoes_generation(admin_client, http):
    course_routes(http)

    resp = admin_client.get("/students/form/course?course_id=1&generation=7")

    data = resp.get_json()
    assert resp.status_code == 200
    assert data["generation"] == 7
    assert data["batch"]["options"] == [{"value": "11", "label": "Morning"}]
    assert data["subjects"]["items"] == [{"name": "Physics", "code": "PHY"}]


def test_cascade_batch_endpoint_returns_fee_total(admin_client, http):
    course_routes(http)

    data = admin_client.get("/students/form/batch?course_id=1&batch_id=11&generation=3").get_json()

    assert data["generation"] == 3
    assert data["fee"]["total"] == "1100.00"


def test_cascade_batch_without_course_is_rejected(admin_client):
    resp = admin_client.get("/students/form/batch?batch_id=11&generation=4")
    assert resp.status_code == 400
    assert resp.get_json()["generation"] == 4


def test_cascade_unknown_batch_is_rejected(admin_client, http):
    course_routes(http)
    resp = admin_client.get("/students/form/batch?course_id=1&batch_id=99&generation=5")
    assert resp.status_code == 400
    assert resp.get_json()["generation"] == 5


def test_cascade_auth_expiry_redirects(admin_client, http):
    http.add("GET", f"{ACADEMICS_API}/courses/1/batches", status=401)
    http.add("GET", f"{ACADEMICS_API}/courses/1/subjects", [])
    resp = admin_client.get("/students/form/course?course_id=1&generation=1")
    assert resp.status_code == 302
    assert "/auth/login" in resp.headers["Location"]


# ----------------------------------------------------------------------
# Feedback
# ----------------------------------------------------------------------
def test_feedback_admin_lists_and_filters(admin_client, http):
    http.add("GET", "/api/feedback/all", [
        {"id": 1, "subject": "Bus late", "user_name": "Asha", "status": "Pending", "priority": "High"},
        {"id": 2, "subject": "Library hours", "user_name": "Ravi", "status": "Resolved", "priority": "Low"},
    ])
    resp = admin_client.get("/feedback/admin?search=library")
    assert resp.status_code == 200
    assert b"Library hours" in resp.data
    assert b"Bus late" not in resp.data


@pytest.mark.parametrize("priority, expected", [("High", "High"), ("", "Medium")])
def test_feedback_update_keeps_priority(admin_client, http, priority, expected):
    http.add("PUT", "/api/feedback/update/3", {"message": "ok"})

    resp = admin_client.post("/feedback/admin/3/update", data={
        "status": "Resolved", "admin_note": "done", "priority": priority,
    })

    assert resp.status_code == 302
    assert http.called("PUT", "/api/feedback/update/3")[0]["json"] == {
        "status": "Resolved", "admin_note": "done", "priority": expected,
    }


def test_feedback_delete(admin_client, http):
    http.add("DELETE", "/api/feedback/delete/3", {"message": "deleted"})
    assert admin_client.post("/feedback/admin/3/delete").status_code == 302
    assert http.called("DELETE", "/api/feedback/delete/3")


# ----------------------------------------------------------------------
# Attendance
# ----------------------------------------------------------------------
MONTHLY = {
    "total_days_in_month": 3,
    "report": [{
        "user_id": "u-1", "full_name": "Asha Rao", "present_count": 2, "absent_count": 1,
        "daily_attendance_pivot": {"1": "Present", "2": "Absent", "3": "Present"},
    }],
}


def test_monthly_report_renders_grid_and_chart(admin_client, http):
    http.add("GET", "/api/attendance/report/monthly", MONTHLY)

    resp = admin_client.get("/attendance/monthly?user_type=Student&year=2024&month=6")

    assert resp.status_code == 200
    assert b"Asha Rao" in resp.data
    assert b"data:image/png;base64," in resp.data
    params = http.called("GET", "/api/attendance/report/monthly")[0]["params"]
    assert params["year"] == 2024
    assert params["month"] == 6


def test_monthly_report_waits_for_a_month(admin_client, http):
    assert admin_client.get("/attendance/monthly").status_code == 200
    assert not http.called("GET", "/api/attendance/report/monthly")


def test_monthly_csv_export(admin_client, http):
    http.add("GET", "/api/attendance/report/monthly", MONTHLY)
    resp = admin_client.get("/attendance/monthly.csv?user_type=Student&year=2024&month=6")
    assert resp.mimetype == "text/csv"
    assert "attendance_student_2024_06.csv" in resp.headers["Content-Disposition"]
    assert "u-1,Asha Rao,2,1,0,0,P,A,P" in resp.data.decode("utf-8")


def test_my_report_percentage(student_client, http):
    http.add("GET", "/api/attendance/report/student", [
        {"status": "PRESENT", "subject_name": "Physics"},
        {"status": "PRESENT", "subject_name": "Physics"},
        {"status": "ABSENT", "subject_name": "Maths"},
    ])

    resp = student_client.get("/attendance/my-report")

    assert resp.status_code == 200
    assert b"66.67%" in resp.data
    assert http.called("GET", "/api/attendance/report/student")[0]["params"]["user_id"] == "42"


def test_my_report_needs_student_id(admin_client):
    assert admin_client.get("/attendance/my-report").status_code == 302


# ----------------------------------------------------------------------
# Mark entry
# ----------------------------------------------------------------------
def mark_routes(http):
    http.add("GET", "/api/mark-entry/my-assigned-schedules", [
        {"schedule_id": 7, "exam_name": "Midterm", "exam_date": "2024-03-01", "subject_name": "Physics", "total_marks": 50},
    ])
    http.add("GET", "/api/mark-entry/enrollments/7", [
        {"enrollment_id": 1, "student_name": "Asha", "hall_ticket_number": "H1"},
        {"enrollment_id": 2, "student_name": "Ravi", "hall_ticket_number": "H2"},
    ])


def test_mark_entry_query_redirects_to_schedule(admin_client):
    resp = admin_client.get("/mark-entry?schedule_id=7")
    assert resp.headers["Location"].endswith("/mark-entry/7")


def test_invalid_marks_are_not_saved(admin_client, http):
    mark_routes(http)

    resp = admin_client.post("/mark-entry/7", data={"marks-1": "60", "marks-2": "40"})

    assert resp.status_code == 200
    assert b"Please correct invalid marks" in resp.data
    assert not http.called("POST", "/api/mark-entry/bulk-save/7")


def test_valid_marks_are_bulk_saved(admin_client, http):
    mark_routes(http)
    http.add("POST", "/api/mark-entry/bulk-save/7", {"message": "saved"})

    resp = admin_client.post("/mark-entry/7", data={"marks-1": "50", "marks-2": "0"})

    assert resp.status_code == 302
    sent = http.called("POST", "/api/mark-entry/bulk-save/7")[0]["json"]
    assert sent == [
        {"enrollment_id": 1, "marks_obtained": 50.0},
        {"enrollment_id": 2, "marks_obtained": 0.0},
    ]


def test_unassigned_schedule_redirects(admin_client, http):
    mark_routes(http)
    resp = admin_client.get("/mark-entry/99")
    assert resp.status_code == 302
    assert not http.called("GET", "/api/mark-entry/enrollments/99")


# ----------------------------------------------------------------------
# Settings, errors and CLI
# ----------------------------------------------------------------------
def test_settings_refresh_refetches_and_caches(app, admin_client, http):
    http.add("GET", CONFIG_ENDPOINT, {"school_name": "Green Valley"})

    resp = admin_client.post("/settings/refresh", data={"next": "/students"})

    assert resp.headers["Location"].endswith("/students")
    assert len(http.called("GET", CONFIG_ENDPOINT)) == 2
    slot = app.extensions["erp_settings"].scope("branch-1")
    assert slot.get(SETTINGS_CACHE_KEY)["data"] == {"school_name": "Green Valley"}
    with admin_client.session_transaction() as sess:
        assert SETTINGS_CACHE_KEY not in sess


def test_cached_settings_skip_the_backend(admin_client, http):
    http.add("GET", CONFIG_ENDPOINT, {"school_name": "Green Valley"})
    admin_client.get("/")
    admin_client.get("/")
    assert len(http.called("GET", CONFIG_ENDPOINT)) == 1


def test_large_settings_stay_out_of_the_session_cookie(app, client, http):
    inline_logo = "data:image/png;base64," + base64.b64encode(os.urandom(4500)).decode("ascii")
    http.add("GET", CONFIG_ENDPOINT, {"school_name": "Green Valley", "school_logo_path": inline_logo})
    http.add("POST", "/api/auth/login", LOGIN_OK)
    http.add("GET", "/api/students", [STUDENT])

    login = client.post("/auth/login", data={"username": "office", "password": "pw"})
    page = client.get("/students")

    assert page.status_code == 200
    for resp in (login, page):
        for cookie in resp.headers.getlist("Set-Cookie"):
            assert len(cookie) <= 4093
    with client.session_transaction() as sess:
        assert sess[TOKEN_KEY] == "new-token"
        assert SETTINGS_CACHE_KEY not in sess
    cached = app.extensions["erp_settings"].scope("branch-1").get(SETTINGS_CACHE_KEY)
    assert cached["data"]["school_logo_path"] == inline_logo


def test_unknown_page_renders_error_template(admin_client):
    resp = admin_client.get("/no/such/page")
    assert resp.status_code == 404


def test_hash_password_cli(app):
    result = app.test_cli_runner().invoke(args=["hash-password", "s3cret"])
    assert result.exit_code == 0
    hashed = result.output.strip().encode("utf-8")
    assert hashed.startswith(b"$2b$10$")
    assert bcrypt.checkpw(b"s3cret", hashed)
