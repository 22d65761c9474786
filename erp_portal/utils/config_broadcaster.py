# erp_portal/utils/config_broadcaster.py
"""
School branding / feature configuration.

Loaded once per page session: a cached copy in the app's SettingsCache (one
slot per branch) is reused while it is younger than an hour, otherwise the
backend is asked again. If the backend refuses (typically 401 on pages opened before login) the
hard-coded default theme is used instead of failing the page.

Once branding is computed the `config_ready` signal fires. Code that needs the
settings connects to it; reading `settings` before that raises ConfigNotReady.
"""
import logging
import threading
from datetime import datetime, timezone
from types import MappingProxyType

from blinker import Namespace

from erp_portal.utils.errors import ConfigNotReady, NetworkError
from erp_portal.utils.formatters import Formatters, parse_datetime

logger = logging.getLogger(__name__)

_signals = Namespace()
config_ready = _signals.signal("config-ready")

SETTINGS_CACHE_KEY = "erp_settings_v2"
MAX_CACHE_AGE_MS = 3_600_000
CONFIG_ENDPOINT = "/api/settings/config/current"
WATERMARK_REPEAT = 120

DEFAULT_THEME = {
    "primary": "#1e3a8a",
    "secondary": "#d97706",
    "logo": "/images/default-logo.png",
    "name": "Enterprise ERP",
}

FEEDBACK_STATUSES = ("New", "In Progress", "Resolved", "Closed")
FEEDBACK_PRIORITIES = ("Low", "Medium", "High", "Urgent")

API_ENDPOINTS = {
    "SUBMIT_FEEDBACK": "/api/feedback/submit",
    "MY_SUBMISSIONS": "/api/feedback/my-submissions",
    "ALL_FEEDBACK": "/api/feedback/all",
    "UPDATE_FEEDBACK": "/api/feedback/update/{id}",
    "DELETE_FEEDBACK": "/api/feedback/delete/{id}",
}

IDENTITY_FIELDS = ("school_address", "school_email", "school_phone", "email_global_footer")


def static_config(api_base):
    return {
        "API_BASE": api_base,
        "FEEDBACK_STATUSES": list(FEEDBACK_STATUSES),
        "FEEDBACK_PRIORITIES": list(FEEDBACK_PRIORITIES),
        "DEFAULT_THEME": dict(DEFAULT_THEME),
        "API_ENDPOINTS": dict(API_ENDPOINTS),
    }


def utcnow():
    return datetime.now(timezone.utc)


class SettingsCache:
    """
    Server-side home for cached school settings, one slot per branch.

    The settings payload can carry an inline logo, so it must stay out of the
    signed-cookie session that holds the login token.
    """

    def __init__(self):
        self._slots = {}
        self._lock = threading.Lock()

    def scope(self, branch_id=None):
        return SettingsSlot(self, str(branch_id or "public"))

    def clear(self):
        with self._lock:
            self._slots.clear()


class SettingsSlot:
    """Mapping-style view of one branch's entries in a SettingsCache."""

    def __init__(self, cache, scope):
        self.cache = cache
        self.scope = scope

    def get(self, key, default=None):
        with self.cache._lock:
            return self.cache._slots.get((self.scope, key), default)

    def __setitem__(self, key, value):
        with self.cache._lock:
            self.cache._slots[(self.scope, key)] = value

    def __contains__(self, key):
        with self.cache._lock:
            return (self.scope, key) in self.cache._slots

    def pop(self, key, default=None):
        with self.cache._lock:
            return self.cache._slots.pop((self.scope, key), default)


class Branding:
    """What the layout template needs from the settings, computed once."""

    def __init__(self, settings, api_base, tz_name="Asia/Kolkata"):
        self.primary_color = settings.get("theme_primary_color") or settings.get("primary")
        self.secondary_color = settings.get("theme_secondary_color") or settings.get("secondary")
        self.school_name = settings.get("school_name") or settings.get("name") or DEFAULT_THEME["name"]

        logo = settings.get("school_logo_path") or settings.get("logo") or DEFAULT_THEME["logo"]
        if not logo.startswith("http") and not logo.startswith("data:"):
            logo = f"{api_base.rstrip('/')}{logo}"
        self.logo_url = logo
        self.fallback_logo = DEFAULT_THEME["logo"]
        self.favicon_url = logo

        self.watermark = [self.school_name] * WATERMARK_REPEAT
        self.identity = {k: settings[k] for k in IDENTITY_FIELDS if settings.get(k)}

        self.show_tenant_switch = settings.get("multi_tenant_mode") is not False
        self.dim_sms_panel = not settings.get("sms_provider")

        self.formatters = Formatters(settings.get("currency") or "INR", tz_name)

    def page_title(self, title=None):
        if not title or title == "Document" or "ERP" in title:
            return f"{self.school_name} | Portal"
        return title

    def css_variables(self):
        variables = {}
        if self.primary_color:
            variables["--primary-color"] = self.primary_color
        if self.secondary_color:
            variables["--secondary-color"] = self.secondary_color
        return variables


class ConfigBroadcaster:
    def __init__(self, api, store, api_base, clock=utcnow, max_age_ms=MAX_CACHE_AGE_MS, tz_name="Asia/Kolkata"):
        self.api = api
        self.store = store
        self.api_base = api_base
        self.clock = clock
        self.max_age_ms = max_age_ms
        self.tz_name = tz_name
        self.branding = None
        self._settings = None

    @property
    def ready(self):
        return self._settings is not None

    @property
    def settings(self):
        if self._settings is None:
            raise ConfigNotReady("Configuration has not been loaded yet.")
        return self._settings

    def init(self):
        if self._settings is not None:
            return self._settings

        loaded = self.fetch_configuration()
        merged = dict(loaded)
        merged.update(static_config(self.api_base))
        self._settings = MappingProxyType(merged)
        self.branding = Branding(self._settings, self.api_base, self.tz_name)

        config_ready.send(self, settings=self._settings, branding=self.branding)
        return self._settings

    def _cached(self):
        cached = self.store.get(SETTINGS_CACHE_KEY)
        if not cached:
            return None
        try:
            stamp = parse_datetime(cached["timestamp"])
            data = cached["data"]
        except (KeyError, TypeError, ValueError):
            logger.warning("⚠️ Ignoring unreadable %s cache entry", SETTINGS_CACHE_KEY)
            return None
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)

        age_ms = (self.clock() - stamp).total_seconds() * 1000
        if age_ms < self.max_age_ms:
            return data
        return None

    def fetch_configuration(self):
        cached = self._cached()
        if cached is not None:
            return cached

        try:
            response = self.api.call(CONFIG_ENDPOINT, skip_auth_redirect=True)
        except NetworkError as e:
            logger.error("❌ Config fetch error, using fallbacks: %s", e)
            return dict(DEFAULT_THEME)

        if not response.ok:
            logger.warning("⚠️ Config fetch failed (%s), using default theme.", response.status_code)
            return dict(DEFAULT_THEME)

        try:
            remote = response.json()
        except ValueError:
            logger.error("❌ Config endpoint returned invalid JSON, using default theme.")
            return dict(DEFAULT_THEME)

        self.store[SETTINGS_CACHE_KEY] = {"data": remote, "timestamp": self.clock().isoformat()}
        return remote

    def refresh(self):
        """Drop the cached copy and load everything again."""
        self.store.pop(SETTINGS_CACHE_KEY, None)
        self._settings = None
        self.branding = None
        return self.init()
