"""Error taxonomy shared by the queue engine and the scheduler."""

from __future__ import annotations


class QueueError(Exception):
    """Base class for every failure raised inside the queue engine."""


class ValidationError(QueueError, ValueError):
    """Malformed identifiers or records that violate a model invariant."""


class NotFoundError(QueueError, LookupError):
    """The referenced queue entry or station does not exist."""


class ConflictError(QueueError):
    """Duplicate active booking or a conditional update whose precondition no longer holds."""


class TransientError(QueueError):
    """Store or network failure that may succeed when retried."""


class PermanentError(QueueError):
    """A retryable operation exhausted its retry budget."""


__all__ = [
    'QueueError',
    'ValidationError',
    'NotFoundError',
    'ConflictError',
    'TransientError',
    'PermanentError',
]
