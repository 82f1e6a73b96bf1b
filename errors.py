"""Error types raised by the services and rendered as `{success: false, message}`."""


class MarketplaceError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationFailed(MarketplaceError):
    status_code = 400


class InvalidTransition(MarketplaceError):
    status_code = 400


class CouponError(MarketplaceError):
    status_code = 400


class Unauthorized(MarketplaceError):
    status_code = 401


class Forbidden(MarketplaceError):
    status_code = 403


class NotFound(MarketplaceError):
    status_code = 404


class Conflict(MarketplaceError):
    status_code = 409


class UpstreamError(MarketplaceError):
    """A third-party service (payment gateway, carrier, email) failed."""
    status_code = 502
