# erp_portal/utils/page_session.py
"""
Per-request data layer.

One PageSession is opened in `before_request` and stored on `flask.g`; it owns
the ApiClient, the lookup caches, the worker pool used for enrichment and the
config broadcaster. `close()` runs at teardown and drops everything.
"""
import logging
from concurrent.futures import ThreadPoolExecutor

from erp_portal.utils.api_client import ApiClient
from erp_portal.utils.cascade import ACADEMICS_API
from erp_portal.utils.config_broadcaster import ConfigBroadcaster, SettingsCache
from erp_portal.utils.formatters import Formatters
from erp_portal.utils.list_renderer import course_label, fee_structure_summary, subjects_summary
from erp_portal.utils.lookup_cache import LookupCache

logger = logging.getLogger(__name__)

TOKEN_KEY = "erp-token"
ROLE_KEY = "user-role"
SESSION_ID_KEY = "active_session_id"
BRANCH_ID_KEY = "active_branch_id"
STUDENT_ID_KEY = "student-id"
USERNAME_KEY = "username"

AUTH_KEYS = (TOKEN_KEY, ROLE_KEY, SESSION_ID_KEY, BRANCH_ID_KEY, STUDENT_ID_KEY, USERNAME_KEY)


class PageSession:
    def __init__(self, api, store, api_base, workers=4, max_age_ms=None, tz_name="Asia/Kolkata", settings_store=None):
        self.api = api
        self.store = store
        if settings_store is None:
            settings_store = SettingsCache().scope(store.get(BRANCH_ID_KEY))
        self.tz_name = tz_name
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="erp-enrich")

        self.courses = LookupCache(self._load_course, "courses")
        self.subjects = LookupCache(self._load_subjects, "subjects")
        self.fee_structures = LookupCache(self._load_fee_structure, "fee_structures")

        kwargs = {"tz_name": tz_name}
        if max_age_ms is not None:
            kwargs["max_age_ms"] = max_age_ms
        self.config = ConfigBroadcaster(api, settings_store, api_base, **kwargs)
        self._course_list = None

    @classmethod
    def open(cls, app, store, on_unauthorized=None):
        api = ApiClient(
            app.config["ERP_API_BASE"],
            token=store.get(TOKEN_KEY),
            session=app.extensions.get("erp_http"),
            timeout=app.config["ERP_API_TIMEOUT"],
            on_unauthorized=on_unauthorized,
            branch_id=store.get(BRANCH_ID_KEY),
            academic_session_id=store.get(SESSION_ID_KEY),
        )
        return cls(
            api,
            store,
            app.config["ERP_API_BASE"],
            workers=app.config["ENRICHMENT_WORKERS"],
            max_age_ms=app.config["CONFIG_CACHE_MAX_AGE_MS"],
            tz_name=app.config["ERP_TIMEZONE"],
            settings_store=app.extensions["erp_settings"].scope(store.get(BRANCH_ID_KEY)),
        )

    # ------------------------------------------------------------------
    # Loaders
    # ------------------------------------------------------------------
    def course_list(self):
        """All courses, fetched once; also fills the course cache."""
        if self._course_list is None:
            courses = self.api.get_json(f"{ACADEMICS_API}/courses") or []
            for course in courses:
                cid = course.get("id") or course.get("course_id")
                if cid is not None:
                    self.courses.prime(cid, course)
            self._course_list = courses
        return self._course_list

    def _load_course(self, course_id):
        for course in self.course_list():
            if str(course.get("id") or course.get("course_id")) == course_id:
                return course
        return None

    def _load_subjects(self, course_id):
        return self.api.get_json(f"{ACADEMICS_API}/courses/{course_id}/subjects") or []

    def _load_fee_structure(self, structure_id):
        return self.api.get_json(f"{ACADEMICS_API}/fees/structures/{structure_id}")

    def course_map(self):
        return {str(c.get("id") or c.get("course_id")): c for c in self.course_list()}

    def course_name(self, course_id):
        return course_label(self.courses.get(course_id))

    # ------------------------------------------------------------------
    # Enrichment resolvers for the student list
    # ------------------------------------------------------------------
    def student_resolvers(self):
        fmt = self.formatters.format_currency
        return {
            "subjects": lambda course_id: subjects_summary(self.subjects.get(course_id)),
            "fee_summary": lambda sid: fee_structure_summary(self.fee_structures.get(sid), fmt),
        }

    @property
    def formatters(self):
        if self.config.ready:
            return self.config.branding.formatters
        return Formatters(timezone=self.tz_name)

    @property
    def role(self):
        return self.store.get(ROLE_KEY)

    def close(self):
        self.courses.clear()
        self.subjects.clear()
        self.fee_structures.clear()
        self._course_list = None
        self.executor.shutdown(wait=True)
        logger.debug("🧹 page session closed")
