"""Domain errors raised by the order core.

Routers translate them to HTTP through the handlers registered in
``pdv.main``; plain lookups still raise ``HTTPException`` directly.
"""


class OrderError(Exception):
    status_code = 400
    code = "order_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_body(self) -> dict:
        return {"detail": self.detail, "code": self.code}


class CheckoutValidationError(OrderError):
    """Rejected before anything was written."""
    status_code = 422
    code = "validation_error"


class OrderPersistenceError(OrderError):
    """The Order/OrderItem write failed; the client may retry the checkout."""
    status_code = 503
    code = "persistence_error"

    def to_body(self) -> dict:
        return {**super().to_body(), "retryable": True}


class InvalidTransition(OrderError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, current, target):
        super().__init__(f"cannot move order from {current.value} to {target.value}")
        self.current = current
        self.target = target


class KioskSessionExpired(OrderError):
    status_code = 410
    code = "kiosk_session_expired"


class LoyaltyError(OrderError):
    status_code = 422
    code = "loyalty_error"


class PrintError(Exception):
    """A receipt could not be delivered to the print surface."""
