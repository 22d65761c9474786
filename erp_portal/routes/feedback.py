# erp_portal/routes/feedback.py
from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for

from erp_portal.routes.auth import ADMIN_ROLES, login_required, roles_required
from erp_portal.utils.errors import AuthExpired, ErpError
from erp_portal.utils.reports import feedback_stats, filter_feedback

feedback_bp = Blueprint("feedback_bp", __name__)

DEFAULT_PRIORITY = "Medium"


def _endpoint(name, **kwargs):
    return g.erp_settings["API_ENDPOINTS"][name].format(**kwargs)


@feedback_bp.route("/admin", methods=["GET"])
@login_required
@roles_required(*ADMIN_ROLES)
def admin():
    items, error = [], None
    try:
        items = g.page.api.get_json(_endpoint("ALL_FEEDBACK")) or []
    except AuthExpired:
        raise
    except ErpError as e:
        current_app.logger.error(f"❌ Feedback sync failed: {e}")
        error = f"Sync Error: {e}"

    status = request.args.get("status") or "all"
    category = request.args.get("category") or "all"
    search = request.args.get("search") or ""

    return render_template(
        "feedback_admin.html",
        items=filter_feedback(items, status, category, search),
        stats=feedback_stats(items),
        categories=sorted({i.get("category") for i in items if i.get("category")}),
        statuses=g.erp_settings["FEEDBACK_STATUSES"],
        filters={"status": status, "category": category, "search": search},
        error=error,
    )


@feedback_bp.route("/admin/<feedback_id>/update", methods=["POST"])
@login_required
@roles_required(*ADMIN_ROLES)
def update(feedback_id):
    payload = {
        "status": request.form.get("status"),
        "admin_note": request.form.get("admin_note") or "",
        # the form carries the item's current priority so an update never resets it
        "priority": request.form.get("priority") or DEFAULT_PRIORITY,
    }
    try:
        g.page.api.put_json(_endpoint("UPDATE_FEEDBACK", id=feedback_id), payload)
    except AuthExpired:
        raise
    except ErpError as e:
        flash(f"Update failed: {e}", "danger")
    else:
        flash("Feedback updated.", "success")
    return redirect(url_for("feedback_bp.admin", **request.args))


@feedback_bp.route("/admin/<feedback_id>/delete", methods=["POST"])
@login_required
@roles_required(*ADMIN_ROLES)
def delete(feedback_id):
    try:
        g.page.api.delete(_endpoint("DELETE_FEEDBACK", id=feedback_id))
    except AuthExpired:
        raise
    except ErpError as e:
        flash(f"Delete failed: {e}", "danger")
    else:
        flash("Feedback deleted.", "success")
    return redirect(url_for("feedback_bp.admin"))
