from __future__ import annotations


class ShopFloorError(Exception):
    pass


class LocalValidationError(ShopFloorError, ValueError):
    """Rejected synchronously before any state change or remote call."""

    def __init__(self, reason: str, message: str | None = None):
        self.reason = reason
        self.message = message or reason
        super().__init__(self.message)


class RemoteError(ShopFloorError, RuntimeError):
    pass


class PayloadParseError(ShopFloorError, ValueError):
    pass


class MutationInFlightError(ShopFloorError):
    def __init__(self, entity_key: str):
        self.entity_key = entity_key
        super().__init__(f"A change to {entity_key} is still being synchronized.")
