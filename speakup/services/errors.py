"""Errors raised by the vendor-backed services."""

from typing import Optional


class ServiceError(Exception):
    """A collaborator call failed; ``message`` is safe to show to the learner."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        return self.message
