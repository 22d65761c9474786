# erp_portal/routes/mark_entry.py
from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for

from erp_portal.routes.auth import login_required
from erp_portal.utils.cascade import MarkEntryController
from erp_portal.utils.errors import AuthExpired, ErpError, ValidationError
from erp_portal.utils.forms import build_marks_payload

mark_entry_bp = Blueprint("mark_entry_bp", __name__)

MARK_FIELD_PREFIX = "marks-"


def _controller():
    controller = MarkEntryController(g.page.api)
    try:
        controller.load_schedules()
    except AuthExpired:
        raise
    except ErpError as e:
        current_app.logger.error(f"❌ Failed to load assigned exams: {e}")
        flash(f"Error loading assigned exams: {e}", "danger")
    return controller


def _render(controller, invalid=(), entered=None):
    return render_template(
        "mark_entry.html",
        schedules=controller.schedule_options(),
        schedule=controller.schedule,
        details=controller.exam_details(),
        enrollments=controller.enrollments.as_dict(),
        max_marks=controller.max_marks,
        invalid=set(invalid),
        entered=entered or {},
    )


@mark_entry_bp.route("", methods=["GET"])
@login_required
def mark_entry():
    schedule_id = request.args.get("schedule_id")
    if schedule_id:
        return redirect(url_for("mark_entry_bp.schedule", schedule_id=schedule_id))
    return _render(_controller())


@mark_entry_bp.route("/<schedule_id>", methods=["GET", "POST"])
@login_required
def schedule(schedule_id):
    controller = _controller()
    controller.select_schedule(schedule_id)
    if controller.schedule is None:
        flash("That exam is not assigned to you.", "warning")
        return redirect(url_for("mark_entry_bp.mark_entry"))

    if request.method == "POST":
        entered = {
            key[len(MARK_FIELD_PREFIX):]: value
            for key, value in request.form.items()
            if key.startswith(MARK_FIELD_PREFIX)
        }
        try:
            payload = build_marks_payload(entered.items(), controller.max_marks)
        except ValidationError as e:
            flash(e.message, "danger")
            return _render(controller, invalid=[str(i) for i in (e.payload or {}).get("invalid", [])], entered=entered)

        try:
            g.page.api.post_json(f"/api/mark-entry/bulk-save/{schedule_id}", payload)
        except AuthExpired:
            raise
        except ErpError as e:
            current_app.logger.error(f"❌ Bulk save for schedule {schedule_id} failed: {e}")
            flash(f"Error saving marks: {e}", "danger")
            return _render(controller, entered=entered)

        flash(f"SUCCESS: All {len(payload)} marks saved/updated securely!", "success")
        return redirect(url_for("mark_entry_bp.schedule", schedule_id=schedule_id))

    return _render(controller)
