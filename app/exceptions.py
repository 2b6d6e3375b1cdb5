"""Exception classes raised by the webhook engine."""


class WebhookError(Exception):
    """Base exception for the webhook engine."""

    def __init__(self, code: str, message: str, status_code: int = 500):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ValidationError(WebhookError):
    """Invalid input from a producer or operator."""

    def __init__(self, message: str):
        super().__init__("VALIDATION_ERROR", message, status_code=400)


class NotFoundError(WebhookError):
    """Webhook event not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            "NOT_FOUND",
            f"{resource} '{resource_id}' not found",
            status_code=404,
        )


class StoreError(WebhookError):
    """Event store failure."""

    def __init__(self, message: str):
        super().__init__("STORE_ERROR", message, status_code=500)
