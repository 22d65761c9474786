# erp_portal/utils/errors.py
"""
Error kinds raised by the portal's data layer.

Routes catch these at the call site and turn them into a flashed message or an
inline display string. AuthExpired is the only one handled app-wide (forced
logout, see erp_portal/__init__.py).
"""


class ErpError(Exception):
    """Base class; `message` is what the user gets to see."""

    status_code = 500

    def __init__(self, message="", status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload

    def __str__(self):
        return self.message or self.__class__.__name__


class AuthExpired(ErpError):
    status_code = 401


class NotFound(ErpError):
    status_code = 404


class ServerError(ErpError):
    status_code = 500


class NetworkError(ErpError):
    status_code = 503


class ValidationError(ErpError):
    status_code = 400


class MailDeliveryError(ErpError):
    status_code = 500


class ConfigNotReady(ErpError):
    status_code = 500
