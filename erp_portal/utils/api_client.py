# erp_portal/utils/api_client.py
"""
Authenticated client for the ERP REST backend.

Every page talks to the backend through one ApiClient owned by the page
session. It injects the bearer token and JSON headers, turns 401/403 into a
forced logout (AuthExpired) and maps other failures onto the error kinds in
erp_portal.utils.errors. There is no retry: a failed call is shown to the user
and they reload the page.
"""
import logging

import requests

from erp_portal.utils.errors import AuthExpired, NetworkError, NotFound, ServerError

logger = logging.getLogger(__name__)

AUTH_FAILURE_CODES = (401, 403)


def error_message(response, default=None):
    """Pull the prose message out of a backend error body."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        msg = body.get("message") or body.get("error")
        if msg:
            return str(msg)

    if default:
        return default

    text = (response.text or "").strip()
    if text:
        return f"Server error: {response.status_code}. {text[:100]}"
    return f"HTTP Error {response.status_code}"


class ApiClient:
    def __init__(
        self,
        base_url,
        token=None,
        session=None,
        timeout=15,
        on_unauthorized=None,
        branch_id=None,
        academic_session_id=None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout
        self.on_unauthorized = on_unauthorized
        self.branch_id = branch_id
        self.academic_session_id = academic_session_id

    def url_for(self, path):
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}{path}"

    def headers(self, extra=None):
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.branch_id:
            headers["active-branch-id"] = str(self.branch_id)
        if self.academic_session_id:
            headers["active-session-id"] = str(self.academic_session_id)
        if extra:
            headers.update(extra)
        return headers

    def call(self, path, method="GET", json=None, params=None, headers=None, skip_auth_redirect=False):
        """
        Send one request and return the raw `requests.Response`.

        A 401/403 fires `on_unauthorized` and raises AuthExpired before the
        body is looked at, unless `skip_auth_redirect` is set (config loading
        and the login form handle those statuses themselves).
        """
        url = self.url_for(path)
        try:
            response = self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers=self.headers(headers),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("❌ API call failed [%s %s]: %s", method, url, e)
            raise NetworkError(f"A network error occurred while contacting the server: {e}") from e

        if response.status_code in AUTH_FAILURE_CODES and not skip_auth_redirect:
            logger.warning("🔒 %s %s returned %s, forcing logout", method, url, response.status_code)
            response.close()
            if self.on_unauthorized is not None:
                self.on_unauthorized(response.status_code)
            raise AuthExpired(
                "Session expired or unauthorized. Please log in again.",
                status_code=response.status_code,
            )

        return response

    def _decode(self, response):
        if response.status_code == 404:
            raise NotFound(error_message(response, "Resource Not Found (404)."), status_code=404)
        if not response.ok:
            raise ServerError(error_message(response), status_code=response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ServerError(f"Server returned an invalid response ({response.status_code}).") from e

    def get_json(self, path, params=None, **kwargs):
        return self._decode(self.call(path, "GET", params=params, **kwargs))

    def post_json(self, path, payload=None, **kwargs):
        return self._decode(self.call(path, "POST", json=payload, **kwargs))

    def put_json(self, path, payload=None, **kwargs):
        return self._decode(self.call(path, "PUT", json=payload, **kwargs))

    def delete(self, path, **kwargs):
        return self._decode(self.call(path, "DELETE", **kwargs))
