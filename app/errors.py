from typing import Optional


class PaymentServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(PaymentServiceError):
    """Caller omitted required input fields or sent unusable values."""
    status_code = 400


class GatewayError(PaymentServiceError):
    """
    The gateway could not be reached or replied with something unreadable.

    Failures the gateway itself reports come back as unsuccessful
    GatewayResponse objects and are answered with a 400.
    """
    status_code = 500


class MalformedEventError(PaymentServiceError):
    status_code = 400


class NotFoundError(PaymentServiceError):
    status_code = 404


class ConfigurationError(Exception):
    pass
