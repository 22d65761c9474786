# erp_portal/routes/__init__.py
from flask import current_app, render_template
from werkzeug.exceptions import HTTPException

from .auth import auth_bp
from .home import home_bp
from .students import students_bp
from .feedback import feedback_bp
from .attendance import attendance_bp
from .mark_entry import mark_entry_bp
from .settings import settings_bp


def register_routes(app):
    app.register_blueprint(auth_bp, url_prefix="/auth")  # So /auth/login is the login page
    app.register_blueprint(home_bp)                      # Leave this without a prefix
    app.register_blueprint(students_bp, url_prefix="/students")
    app.register_blueprint(feedback_bp, url_prefix="/feedback")
    app.register_blueprint(attendance_bp, url_prefix="/attendance")
    app.register_blueprint(mark_entry_bp, url_prefix="/mark-entry")
    app.register_blueprint(settings_bp, url_prefix="/settings")

    @app.errorhandler(Exception)
    def handle_error(e):
        code = getattr(e, "code", None) or getattr(e, "status_code", None) or 500
        if not isinstance(e, HTTPException):
            current_app.logger.exception("❌ Unhandled error")
        return render_template("error.html", error=e, code=code), code
