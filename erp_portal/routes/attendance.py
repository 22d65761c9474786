# erp_portal/routes/attendance.py
from datetime import datetime

import pytz
from flask import Blueprint, current_app, flash, g, redirect, render_template, request, send_file, session, url_for

from erp_portal.routes.auth import login_required
from erp_portal.utils.errors import AuthExpired, ErpError, NotFound
from erp_portal.utils.page_session import STUDENT_ID_KEY
from erp_portal.utils.reports import (
    frame_to_csv,
    monthly_chart,
    monthly_frame,
    monthly_grid,
    student_attendance_summary,
)

attendance_bp = Blueprint("attendance_bp", __name__)

USER_TYPES = ("Student", "Teacher", "Staff")


def _monthly_params():
    now = datetime.now(pytz.timezone(current_app.config["ERP_TIMEZONE"]))
    return {
        "user_type": request.args.get("user_type") or "Student",
        "year": request.args.get("year", default=now.year, type=int),
        "month": request.args.get("month", default=now.month, type=int),
        "user_id": request.args.get("user_id") or "",
    }


def _fetch_monthly(params):
    data = g.page.api.get_json("/api/attendance/report/monthly", params=params) or {}
    total_days = int(data.get("total_days_in_month") or 0)
    return monthly_grid(data.get("report") or [], total_days), total_days


@attendance_bp.route("/monthly", methods=["GET"])
@login_required
def monthly():
    params = _monthly_params()
    rows, total_days, error = [], 0, None

    if request.args.get("month"):
        try:
            rows, total_days = _fetch_monthly(params)
        except AuthExpired:
            raise
        except NotFound:
            rows = []
        except ErpError as e:
            current_app.logger.error(f"❌ Monthly attendance fetch failed: {e}")
            error = f"Error loading report: {e}"

    title = f"{params['user_type']} attendance {params['month']:02d}/{params['year']}"
    return render_template(
        "attendance_monthly.html",
        params=params,
        user_types=USER_TYPES,
        rows=rows,
        total_days=total_days,
        chart=monthly_chart(rows, title),
        error=error,
    )


@attendance_bp.route("/monthly.csv", methods=["GET"])
@login_required
def monthly_csv():
    params = _monthly_params()
    try:
        rows, total_days = _fetch_monthly(params)
    except AuthExpired:
        raise
    except ErpError as e:
        flash(f"Error exporting report: {e}", "danger")
        return redirect(url_for("attendance_bp.monthly", **request.args))

    filename = f"attendance_{params['user_type'].lower()}_{params['year']}_{params['month']:02d}.csv"
    return send_file(
        frame_to_csv(monthly_frame(rows, total_days)),
        download_name=filename,
        as_attachment=True,
        mimetype="text/csv",
    )


@attendance_bp.route("/my-report", methods=["GET"])
@login_required
def my_report():
    student_id = session.get(STUDENT_ID_KEY)
    if not student_id:
        flash("Student ID not found. Please log in again.", "warning")
        return redirect(url_for("home_bp.home"))

    filters = {
        "start_date": request.args.get("start_date") or "",
        "end_date": request.args.get("end_date") or "",
        "subject_name": request.args.get("subject_name") or "",
    }
    records, error = [], None
    try:
        records = g.page.api.get_json(
            "/api/attendance/report/student", params={"user_id": student_id, **filters}
        ) or []
    except AuthExpired:
        raise
    except NotFound:
        records = []
    except ErpError as e:
        error = f"Error loading attendance: {e}"

    return render_template(
        "attendance_my_report.html",
        records=records,
        summary=student_attendance_summary(records),
        filters=filters,
        subjects=sorted({r.get("subject_name") for r in records if r.get("subject_name")}),
        error=error,
    )
