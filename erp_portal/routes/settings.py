# erp_portal/routes/settings.py
from flask import Blueprint, current_app, flash, g, redirect, request, url_for

from erp_portal.routes.auth import is_safe_url, login_required

settings_bp = Blueprint("settings_bp", __name__)


@settings_bp.route("/refresh", methods=["POST"])
@login_required
def refresh():
    """Drop the cached school settings and load them again from the backend."""
    g.page.config.refresh()
    current_app.logger.info("🔄 School settings reloaded")
    flash("School settings reloaded.", "success")

    next_url = request.form.get("next")
    if next_url and is_safe_url(next_url):
        return redirect(next_url)
    return redirect(url_for("home_bp.home"))
