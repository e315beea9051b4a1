from __future__ import annotations


class OutboxError(Exception):
    pass


class OutboxValidationError(OutboxError):
    """Malformed enqueue input. Nothing was queued."""

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class InvalidStateError(OutboxError):
    pass


class NotFoundError(OutboxError):
    pass


class UnitOfWorkRequired(OutboxError):
    pass


class DeliveryError(OutboxError):
    """Transport or provider rejected a message. Carries the provider diagnostic."""

    def __init__(self, message: str, *, provider: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
