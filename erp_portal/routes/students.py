# erp_portal/routes/students.py
from flask import Blueprint, current_app, flash, g, jsonify, redirect, render_template, request, send_file, session, url_for
import pandas as pd

from erp_portal.routes.auth import ADMIN_ROLES, login_required, roles_required
from erp_portal.utils.cascade import ACADEMICS_API, CascadingFormController, course_option
from erp_portal.utils.errors import AuthExpired, ErpError, NotFound, ValidationError
from erp_portal.utils.fees import calculate_total_fee, fee_account_summary, fee_breakdown
from erp_portal.utils.forms import build_student_create_payload, build_student_update_payload
from erp_portal.utils.list_renderer import (
    build_student_rows,
    enrich_rows,
    filter_students,
    next_sort_direction,
    sort_records,
)
from erp_portal.utils.page_session import BRANCH_ID_KEY, ROLE_KEY, SESSION_ID_KEY, STUDENT_ID_KEY
from erp_portal.utils.reports import frame_to_csv

students_bp = Blueprint("students_bp", __name__)

STUDENTS_API = "/api/students"
FILTER_KEYS = ("search", "course_id", "batch_id", "status")
SORTABLE_COLUMNS = ("admission_id", "enrollment_no", "first_name", "course_name", "status", "total_fees_due")

CSV_COLUMNS = [
    ("enrollment_no", "Enrollment No"),
    ("admission_id", "Admission ID"),
    ("full_name", "Name"),
    ("course_batch", "Course / Batch"),
    ("fees_structure", "Fee Structure"),
    ("fees_due", "Fees Due"),
    ("email", "Email"),
    ("phone_number", "Phone"),
    ("status", "Status"),
]


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _course_options():
    try:
        return [course_option(c) for c in g.page.course_list()]
    except AuthExpired:
        raise
    except ErpError as e:
        current_app.logger.error(f"❌ Failed to load courses: {e}")
        flash(f"Could not load courses: {e}", "warning")
        return []


def _batch_options(course_id):
    if not course_id:
        return []
    try:
        batches = g.page.api.get_json(f"{ACADEMICS_API}/courses/{course_id}/batches") or []
    except AuthExpired:
        raise
    except ErpError as e:
        current_app.logger.warning(f"⚠️ Failed to load batches for filter: {e}")
        return []
    return [{"value": str(b.get("id") or b.get("batch_id")), "label": b.get("batch_name") or "Unnamed batch"} for b in batches]


def _load_students():
    try:
        return g.page.api.get_json(STUDENTS_API) or [], None
    except AuthExpired:
        raise
    except ErpError as e:
        current_app.logger.error(f"❌ Student list fetch failed: {e}")
        return [], f"Failed to load student data: {e}"


def _list_filters():
    filters = {k: (request.args.get(k) or "").strip() for k in FILTER_KEYS}
    sort = request.args.get("sort") or "admission_id"
    if sort not in SORTABLE_COLUMNS:
        sort = "admission_id"
    direction = "desc" if request.args.get("dir") == "desc" else "asc"
    return filters, sort, direction


def _student_rows(students, filters, sort, direction):
    page = g.page
    selected = sort_records(filter_students(students, **filters), sort, direction)
    try:
        course_lookup = page.course_map()
    except AuthExpired:
        raise
    except ErpError:
        course_lookup = None
    return build_student_rows(selected, course_lookup=course_lookup, format_currency=page.formatters.format_currency)


def _cascade():
    page = g.page
    return CascadingFormController(page.api, subjects_cache=page.subjects, executor=page.executor)


def _can_view(student_id):
    if session.get(ROLE_KEY) in ADMIN_ROLES:
        return True
    return str(session.get(STUDENT_ID_KEY) or "") == str(student_id)


# ----------------------------------------------------------------------
# List + export
# ----------------------------------------------------------------------
@students_bp.route("", methods=["GET"])
@login_required
@roles_required(*ADMIN_ROLES)
def list_students():
    filters, sort, direction = _list_filters()
    students, error = _load_students()

    rows = _student_rows(students, filters, sort, direction)
    enrich_rows(rows, g.page.student_resolvers(), executor=g.page.executor)

    statuses = sorted({s.get("status") for s in students if s.get("status")})
    sort_links = {
        col: next_sort_direction(sort, direction, col) for col in SORTABLE_COLUMNS
    }
    return render_template(
        "students.html",
        rows=rows,
        total=len(students),
        error=error,
        filters=filters,
        sort=sort,
        direction=direction,
        sort_links=sort_links,
        courses=_course_options(),
        batches=_batch_options(filters["course_id"]),
        statuses=statuses,
    )


@students_bp.route("/export.csv", methods=["GET"])
@login_required
@roles_required(*ADMIN_ROLES)
def export_students():
    filters, sort, direction = _list_filters()
    students, error = _load_students()
    if error:
        flash(error, "danger")
        return redirect(url_for("students_bp.list_students", **request.args))

    rows = _student_rows(students, filters, sort, direction)
    df = pd.DataFrame(
        [[row[key] for key, _ in CSV_COLUMNS] for row in rows],
        columns=[label for _, label in CSV_COLUMNS],
    )
    return send_file(
        frame_to_csv(df),
        download_name="students.csv",
        as_attachment=True,
        mimetype="text/csv",
    )


# ----------------------------------------------------------------------
# View + fees
# ----------------------------------------------------------------------
@students_bp.route("/<student_id>", methods=["GET"])
@login_required
def view_student(student_id):
    if not _can_view(student_id):
        flash("You do not have permission to view that page.", "warning")
        return redirect(url_for("home_bp.home"))

    try:
        student = g.page.api.get_json(f"{STUDENTS_API}/{student_id}")
    except NotFound:
        flash("Student not found.", "warning")
        return redirect(url_for("students_bp.list_students"))
    except AuthExpired:
        raise
    except ErpError as e:
        flash(f"Error loading student profile: {e}", "danger")
        return redirect(url_for("students_bp.list_students"))

    summary = fee_account_summary(student.get("fee_summary") or student)
    course_name = student.get("course_name")
    if not course_name and student.get("course_id"):
        try:
            course_name = g.page.course_name(student["course_id"])
        except AuthExpired:
            raise
        except ErpError:
            course_name = None

    return render_template(
        "student_view.html",
        student=student,
        student_id=student_id,
        course_name=course_name or "N/A",
        summary=summary,
    )


@students_bp.route("/<student_id>/fees", methods=["GET"])
@login_required
def view_fees(student_id):
    if not _can_view(student_id):
        flash("You do not have permission to view that page.", "warning")
        return redirect(url_for("home_bp.home"))

    page = g.page
    header_error = None
    student = {}
    try:
        student = page.api.get_json(f"{STUDENTS_API}/{student_id}") or {}
    except AuthExpired:
        raise
    except ErpError as e:
        current_app.logger.error(f"❌ Student header load failed: {e}")
        header_error = "Error Loading Student Header"

    structure, fee_error = None, None
    try:
        if student.get("fee_structure_id"):
            structure = page.fee_structures.get(student["fee_structure_id"])
        elif student.get("course_id") and student.get("batch_id"):
            structure = page.api.get_json(
                f"{ACADEMICS_API}/fees/structures/find",
                params={"course_id": student["course_id"], "batch_id": student["batch_id"]},
            )
    except NotFound:
        structure = None
    except AuthExpired:
        raise
    except ErpError as e:
        fee_error = f"Error fetching fee: {e}"

    lines = fee_breakdown(structure) if structure else []
    return render_template(
        "student_fees.html",
        student=student,
        student_id=student_id,
        header_error=header_error,
        structure=structure,
        lines=lines,
        total=calculate_total_fee(structure) if structure else None,
        summary=fee_account_summary(student.get("fee_summary") or student),
        fee_error=fee_error,
    )


# ----------------------------------------------------------------------
# Add / edit / delete
# ----------------------------------------------------------------------
@students_bp.route("/add", methods=["GET", "POST"])
@login_required
@roles_required(*ADMIN_ROLES)
def add_student():
    controller = _cascade()
    form = {}

    if request.method == "POST":
        form = request.form.to_dict()
        try:
            payload = build_student_create_payload(
                request.form,
                branch_id=session.get(BRANCH_ID_KEY),
                academic_session_id=session.get(SESSION_ID_KEY),
            )
        except ValidationError as e:
            flash(e.message, "danger")
        else:
            try:
                created = g.page.api.post_json(STUDENTS_API, payload) or {}
            except AuthExpired:
                raise
            except ErpError as e:
                current_app.logger.error(f"❌ Add student failed: {e}")
                flash(f"Error adding student: {e}", "danger")
            else:
                flash("Student added successfully!", "success")
                new_id = created.get("student_id") or created.get("id")
                if new_id:
                    return redirect(url_for("students_bp.view_student", student_id=new_id))
                return redirect(url_for("students_bp.list_students"))

        controller.replay(form.get("course_id"), form.get("batch_id"))

    return render_template(
        "student_form.html",
        mode="add",
        student=form,
        courses=_course_options(),
        cascade=controller.as_dict(),
    )


@students_bp.route("/<student_id>/edit", methods=["GET", "POST"])
@login_required
@roles_required(*ADMIN_ROLES)
def edit_student(student_id):
    controller = _cascade()

    if request.method == "POST":
        form = request.form.to_dict()
        try:
            payload = build_student_update_payload(request.form, form.get("user_id"))
        except ValidationError as e:
            flash(e.message, "danger")
        else:
            try:
                g.page.api.put_json(f"{STUDENTS_API}/{student_id}", payload)
            except AuthExpired:
                raise
            except ErpError as e:
                current_app.logger.error(f"❌ Update for student {student_id} failed: {e}")
                flash(f"Error updating student: {e}", "danger")
            else:
                flash("Student updated successfully!", "success")
                return redirect(url_for("students_bp.view_student", student_id=student_id))

        form.pop("password", None)
        form.pop("confirm_password", None)
        controller.replay(form.get("course_id"), form.get("batch_id"))
        return render_template(
            "student_form.html",
            mode="edit",
            student=form,
            student_id=student_id,
            courses=_course_options(),
            cascade=controller.as_dict(),
        )

    try:
        student = g.page.api.get_json(f"{STUDENTS_API}/{student_id}")
    except NotFound:
        flash("Student not found.", "warning")
        return redirect(url_for("students_bp.list_students"))
    except AuthExpired:
        raise
    except ErpError as e:
        flash(f"Error loading student data: {e}", "danger")
        return redirect(url_for("students_bp.list_students"))

    controller.replay(student.get("course_id"), student.get("batch_id"))
    return render_template(
        "student_form.html",
        mode="edit",
        student=student,
        student_id=student_id,
        courses=_course_options(),
        cascade=controller.as_dict(),
    )


@students_bp.route("/<student_id>/delete", methods=["POST"])
@login_required
@roles_required(*ADMIN_ROLES)
def delete_student(student_id):
    name = request.form.get("name") or f"Student {student_id}"
    try:
        g.page.api.delete(f"{STUDENTS_API}/{student_id}")
    except AuthExpired:
        raise
    except ErpError as e:
        flash(f"Error deleting student: {e}", "danger")
    else:
        flash(f"{name}'s record has been successfully deactivated.", "success")
    return redirect(url_for("students_bp.list_students"))


# ----------------------------------------------------------------------
# Cascade endpoints (called by static/js/student-form.js)
# ----------------------------------------------------------------------
def _generation():
    return request.args.get("generation", default=0, type=int)


def _cascade_response(controller):
    data = controller.as_dict()
    data["generation"] = _generation()
    return jsonify(data)


@students_bp.route("/form/course", methods=["GET"])
@login_required
@roles_required(*ADMIN_ROLES)
def form_course():
    controller = _cascade()
    controller.select_course(request.args.get("course_id", ""))
    return _cascade_response(controller)


@students_bp.route("/form/batch", methods=["GET"])
@login_required
@roles_required(*ADMIN_ROLES)
def form_batch():
    controller = _cascade()
    course_id = request.args.get("course_id", "")
    batch_id = request.args.get("batch_id", "")
    if not course_id:
        return jsonify({"error": "Select a course before choosing a batch.", "generation": _generation()}), 400

    controller.replay(course_id, batch_id)
    if batch_id and controller.batch_id != batch_id:
        return jsonify({"error": f"'{batch_id}' is not an available option for batch_id.", "generation": _generation()}), 400
    return _cascade_response(controller)
