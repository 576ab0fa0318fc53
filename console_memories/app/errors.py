from __future__ import annotations


class PublishingError(Exception):
    """Base class for errors surfaced to the request layer."""


class ValidationError(PublishingError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class NotFoundError(PublishingError):
    def __init__(self, resource: str, key: str) -> None:
        super().__init__(f"{resource} not found: {key}")
        self.resource = resource
        self.key = key


class StorageError(PublishingError):
    pass
