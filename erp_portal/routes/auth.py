# erp_portal/routes/auth.py
from functools import wraps
from urllib.parse import urljoin, urlparse

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for

from erp_portal.extensions import mail
from erp_portal.utils.api_client import error_message
from erp_portal.utils.email import generate_reset_token, send_password_reset_email, verify_reset_token
from erp_portal.utils.errors import MailDeliveryError, NetworkError, ValidationError
from erp_portal.utils.forms import check_passwords
from erp_portal.utils.page_session import (
    BRANCH_ID_KEY,
    ROLE_KEY,
    SESSION_ID_KEY,
    STUDENT_ID_KEY,
    TOKEN_KEY,
    USERNAME_KEY,
)

auth_bp = Blueprint("auth_bp", __name__)
__all__ = ["auth_bp", "login_required", "roles_required"]

ADMIN_ROLES = {"Admin", "Super Admin", "HR", "Accountant", "Coordinator"}
LOGIN_REQUIRED_FIELDS = ("token", "role", "activeSessionId", "userBranchId")


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get(TOKEN_KEY):
            return redirect(url_for("auth_bp.login", next=request.url))
        return f(*args, **kwargs)
    return decorated_function


def roles_required(*roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if session.get(ROLE_KEY) not in roles:
                flash("You do not have permission to view that page.", "warning")
                return redirect(url_for("home_bp.home"))
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def is_safe_url(target):
    ref_url = urlparse(request.host_url)
    test_url = urlparse(urljoin(request.host_url, target))
    return test_url.scheme in ("http", "https") and ref_url.netloc == test_url.netloc


def _post_public(path, payload):
    """POST to an unauthenticated backend endpoint; 401/403 come back as a normal response."""
    response = g.page.api.call(path, "POST", json=payload, skip_auth_redirect=True)
    try:
        body = response.json()
    except ValueError:
        body = {}
    return response, body if isinstance(body, dict) else {}


@auth_bp.route("/login", methods=["GET", "POST"])
def login():
    next_url = request.args.get("next") or request.form.get("next")

    if request.method == "POST":
        username = (request.form.get("username") or "").strip()
        password = request.form.get("password") or ""

        if not username or not password:
            flash("Please enter your username and password.", "warning")
            return render_template("login.html", next=next_url)

        try:
            response, data = _post_public("/api/auth/login", {"username": username, "password": password})
        except NetworkError as e:
            current_app.logger.error(f"❌ Login request failed: {e}")
            flash("An error occurred. Please check your connection.", "danger")
            return render_template("login.html", next=next_url)

        if not response.ok:
            flash(error_message(response, "Login failed. Please check credentials."), "danger")
            return render_template("login.html", next=next_url)

        if not all(data.get(k) for k in LOGIN_REQUIRED_FIELDS):
            current_app.logger.warning(f"⚠️ Login response missing fields: {sorted(data)}")
            flash("Login successful, but server response is missing required data.", "danger")
            return render_template("login.html", next=next_url)

        session.update({
            TOKEN_KEY: data["token"],
            ROLE_KEY: data["role"],
            SESSION_ID_KEY: data["activeSessionId"],
            BRANCH_ID_KEY: data["userBranchId"],
            USERNAME_KEY: data.get("username") or username,
        })
        if data["role"] == "Student" and data.get("user-id"):
            session[STUDENT_ID_KEY] = data["user-id"]

        current_app.logger.info(f"✅ {username} logged in as {data['role']}")
        if next_url and is_safe_url(next_url):
            return redirect(next_url)
        return redirect(url_for("home_bp.home"))

    return render_template("login.html", next=next_url)


@auth_bp.route("/users-login", methods=["GET", "POST"])
def users_login():
    """Exam-manager login: token only, lands on mark entry."""
    if request.method == "POST":
        email = (request.form.get("email") or "").strip()
        password = request.form.get("password") or ""

        try:
            response, data = _post_public("/api/users/login", {"email": email, "password": password})
        except NetworkError:
            flash("An error occurred. Please check your connection.", "danger")
            return render_template("users_login.html")

        if not response.ok or not data.get("token"):
            flash(error_message(response, "Login failed. Please try again."), "danger")
            return render_template("users_login.html")

        session.update({
            TOKEN_KEY: data["token"],
            ROLE_KEY: data.get("role") or "Teacher",
            USERNAME_KEY: data.get("username") or email,
        })
        return redirect(url_for("mark_entry_bp.mark_entry"))

    return render_template("users_login.html")


@auth_bp.route("/logout", methods=["GET", "POST"])
def logout():
    session.clear()
    return redirect(url_for("auth_bp.login"))


@auth_bp.route("/activate", methods=["GET", "POST"])
def activate():
    if request.method == "POST":
        admission_id = (request.form.get("admission_id") or "").strip()
        email = (request.form.get("email") or "").strip()
        password = request.form.get("password") or ""

        try:
            if not admission_id or not email:
                raise ValidationError("Admission ID and email are required.")
            check_passwords(password, request.form.get("confirm_password") or "", required=True)
        except ValidationError as e:
            flash(e.message, "danger")
            return render_template("activate.html", admission_id=admission_id, email=email)

        try:
            response, data = _post_public(
                "/api/auth/activate-student",
                {"admission_id": admission_id, "email": email, "password": password},
            )
        except NetworkError:
            flash("An error occurred. Please check your connection.", "danger")
            return render_template("activate.html", admission_id=admission_id, email=email)

        if not response.ok:
            flash(error_message(response, "Activation failed."), "danger")
            return render_template("activate.html", admission_id=admission_id, email=email)

        flash(data.get("message") or "Account activated. You can now log in.", "success")
        return redirect(url_for("auth_bp.login"))

    return render_template("activate.html")


@auth_bp.route("/forgot-password", methods=["GET", "POST"])
def forgot_password():
    if request.method == "POST":
        email = (request.form.get("email") or "").strip()

        if not email:
            flash("Please enter your email address.", "warning")
            return redirect(url_for("auth_bp.forgot_password"))

        try:
            response, data = _post_public("/api/auth/forgot-password", {"email": email})
        except NetworkError:
            current_app.logger.exception("❌ forgot_password request failed")
            flash("Something went wrong. Please try again.", "danger")
            return redirect(url_for("auth_bp.forgot_password"))

        if not response.ok:
            flash(error_message(response, "We couldn’t start the reset process. Please try again."), "danger")
            return redirect(url_for("auth_bp.forgot_password"))

        backend_token = data.get("token") or data.get("resetToken")
        if backend_token:
            token = generate_reset_token(current_app.config["SECRET_KEY"], email, backend_token)
            reset_link = url_for("auth_bp.reset_password", token=token, _external=True)
            try:
                send_password_reset_email(mail, email, reset_link)
            except MailDeliveryError as e:
                current_app.logger.exception("❌ Password reset email send failed")
                return render_template("error.html", error=e, code=500), 500

        flash(data.get("message") or "If email exists, link sent.", "success")
        return redirect(url_for("auth_bp.login"))

    return render_template("forgot_password.html")


@auth_bp.route("/reset-password/<token>", methods=["GET", "POST"])
def reset_password(token):
    payload = verify_reset_token(token)
    if not payload:
        flash("Invalid or expired token.", "danger")
        return redirect(url_for("auth_bp.forgot_password"))

    if request.method == "POST":
        password = request.form.get("password") or ""
        try:
            check_passwords(password, request.form.get("confirm_password") or "", required=True)
        except ValidationError as e:
            flash(e.message, "danger")
            return redirect(url_for("auth_bp.reset_password", token=token))

        try:
            response, data = _post_public(
                "/api/auth/reset-password", {"token": payload["token"], "password": password}
            )
        except NetworkError:
            current_app.logger.exception("❌ reset_password request failed")
            flash("We could not update your password. Please try again.", "danger")
            return redirect(url_for("auth_bp.reset_password", token=token))

        if not response.ok:
            flash(error_message(response, "Invalid or expired token."), "danger")
            return redirect(url_for("auth_bp.forgot_password"))

        flash(data.get("message") or "Password updated.", "success")
        return redirect(url_for("auth_bp.login"))

    return render_template("reset_password.html", token=token, email=payload.get("email"))
