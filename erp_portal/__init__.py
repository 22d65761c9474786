import logging
import os

import bcrypt
import click
import requests
from dotenv import load_dotenv
from flask import Flask, flash, g, has_app_context, redirect, request, session, url_for

from erp_portal.extensions import mail
from erp_portal.routes import register_routes
from erp_portal.utils.config_broadcaster import MAX_CACHE_AGE_MS, SettingsCache, config_ready
from erp_portal.utils.errors import AuthExpired
from erp_portal.utils.page_session import AUTH_KEYS, ROLE_KEY, TOKEN_KEY, PageSession

PUBLIC_ENDPOINTS = {
    "auth_bp.login",
    "auth_bp.users_login",
    "auth_bp.logout",
    "auth_bp.activate",
    "auth_bp.forgot_password",
    "auth_bp.reset_password",
    "static",
}


@config_ready.connect
def publish_settings(sender, settings, branding):
    # templates read these; the signal fires inside the request that loaded the config
    if has_app_context():
        g.erp_settings = settings
        g.branding = branding


def _force_logout(store):
    for key in AUTH_KEYS:
        store.pop(key, None)


def _flag(value, default=False):
    if value is None:
        return default
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def load_config(app, overrides=None):
    app.secret_key = os.getenv("SECRET_KEY", "changeme123")

    # -----------------------------
    # 🔌 ERP backend
    # -----------------------------
    app.config.update(
        ERP_API_BASE=os.getenv("ERP_API_BASE", "http://localhost:3005"),
        ERP_API_TIMEOUT=float(os.getenv("ERP_API_TIMEOUT", "15")),
        CONFIG_CACHE_MAX_AGE_MS=int(os.getenv("CONFIG_CACHE_MAX_AGE_MS", str(MAX_CACHE_AGE_MS))),
        ENRICHMENT_WORKERS=int(os.getenv("ENRICHMENT_WORKERS", "4")),
        ERP_TIMEZONE=os.getenv("ERP_TIMEZONE", "Asia/Kolkata"),
    )

    # -----------------------------
    # 📧 Email Configuration
    # -----------------------------
    secure = _flag(os.getenv("EMAIL_SECURE"))
    app.config.update(
        MAIL_SERVER=os.getenv("EMAIL_HOST", "smtp.gmail.com"),
        MAIL_PORT=int(os.getenv("EMAIL_PORT", "465" if secure else "587")),
        MAIL_USE_SSL=secure,
        MAIL_USE_TLS=not secure,
        MAIL_USERNAME=os.getenv("EMAIL_USER"),
        MAIL_PASSWORD=os.getenv("EMAIL_PASS"),
        MAIL_DEFAULT_SENDER=os.getenv("EMAIL_USER"),
    )

    if overrides:
        app.config.update(overrides)
        if "SECRET_KEY" in overrides:
            app.secret_key = overrides["SECRET_KEY"]


def create_app(overrides=None):
    load_dotenv()
    app = Flask(__name__, static_folder="static", template_folder="templates")
    load_config(app, overrides)

    if not app.debug:
        app.logger.setLevel(logging.INFO)

    mail.init_app(app)
    app.extensions["erp_http"] = requests.Session()
    app.extensions["erp_settings"] = SettingsCache()

    # -----------------------------
    # 🔗 Register Blueprints
    # -----------------------------
    register_routes(app)

    # -----------------------------
    # 🔐 Redirect Unauthenticated Users
    # -----------------------------
    @app.before_request
    def require_login():
        if request.endpoint is None or request.endpoint not in PUBLIC_ENDPOINTS:
            if not session.get(TOKEN_KEY):
                return redirect(url_for("auth_bp.login", next=request.url))

    # -----------------------------
    # 📦 Page session + configuration
    # -----------------------------
    @app.before_request
    def open_page_session():
        if request.endpoint == "static":
            return
        # enrichment workers have no request context, so hand over the real session object
        store = session._get_current_object()
        g.page = PageSession.open(app, store, on_unauthorized=lambda status: _force_logout(store))
        g.page.config.init()

    @app.teardown_request
    def close_page_session(exc):
        page = g.pop("page", None)
        if page is not None:
            page.close()

    @app.errorhandler(AuthExpired)
    def handle_auth_expired(e):
        _force_logout(session)
        flash("Session expired or unauthorized. Please log in again.", "danger")
        return redirect(url_for("auth_bp.login", next=request.url))

    # -----------------------------
    # 📦 Inject User Info into Templates
    # -----------------------------
    @app.context_processor
    def inject_user():
        return {
            "user_role": session.get(ROLE_KEY),
            "username": session.get("username"),
            "branding": g.get("branding"),
            "fmt": g.page.formatters if "page" in g else None,
        }

    # -----------------------------
    # 🔑 CLI helpers
    # -----------------------------
    @app.cli.command("hash-password")
    @click.argument("password")
    def hash_password(password):
        """Print a bcrypt hash for PASSWORD (10 rounds)."""
        hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")
        click.echo(hashed)

    return app
