# erp_portal/routes/home.py
from flask import Blueprint, flash, redirect, render_template, session, url_for

from erp_portal.routes.auth import ADMIN_ROLES, login_required
from erp_portal.utils.page_session import ROLE_KEY, STUDENT_ID_KEY

home_bp = Blueprint("home_bp", __name__)

DASHBOARDS = {
    "Student": "student",
    "Teacher": "teacher",
    "Driver": "driver",
    "Parent": "parent",
}


def dashboard_for(role):
    if role in ADMIN_ROLES:
        return "admin"
    return DASHBOARDS.get(role)


def _cards(dashboard):
    if dashboard == "admin":
        return [
            {"title": "Students", "text": "Search, filter and export student records", "href": url_for("students_bp.list_students")},
            {"title": "Add Student", "text": "Enrol a new student with course and batch", "href": url_for("students_bp.add_student")},
            {"title": "Feedback", "text": "Review and respond to submitted feedback", "href": url_for("feedback_bp.admin")},
            {"title": "Monthly Attendance", "text": "Attendance grid for any month", "href": url_for("attendance_bp.monthly")},
            {"title": "Mark Entry", "text": "Enter marks for assigned exams", "href": url_for("mark_entry_bp.mark_entry")},
        ]
    if dashboard == "teacher":
        return [
            {"title": "Mark Entry", "text": "Enter marks for your assigned exams", "href": url_for("mark_entry_bp.mark_entry")},
            {"title": "Monthly Attendance", "text": "Attendance grid for your classes", "href": url_for("attendance_bp.monthly")},
        ]
    if dashboard == "student":
        cards = [{"title": "My Attendance", "text": "Your attendance record and percentage", "href": url_for("attendance_bp.my_report")}]
        student_id = session.get(STUDENT_ID_KEY)
        if student_id:
            cards.append({"title": "My Fees", "text": "Fee structure and balance", "href": url_for("students_bp.view_fees", student_id=student_id)})
        return cards
    return []


@home_bp.route("/")
@login_required
def home():
    role = session.get(ROLE_KEY)
    dashboard = dashboard_for(role)
    if dashboard is None:
        session.clear()
        flash("Your account role is not recognised. Please contact the office.", "danger")
        return redirect(url_for("auth_bp.login"))

    return render_template(
        "home.html",
        dashboard=dashboard,
        subtitle=f"You are logged in as {role}.",
        cards=_cards(dashboard),
    )
