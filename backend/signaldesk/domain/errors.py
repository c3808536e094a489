from dataclasses import dataclass


@dataclass
class DomainError(Exception):
    """A request the API refuses; rendered as a 400 problem."""

    detail: str
    title: str = "Domain Error"
    errors: list[dict] | None = None


@dataclass
class NotFoundError(DomainError):
    title: str = "Not Found"


class DataQualityError(ValueError):
    """A single input record is unusable; callers skip it and keep going."""


class TransientStoreError(RuntimeError):
    """The store is temporarily unavailable; the work can be retried later."""
