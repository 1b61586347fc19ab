"""Error types raised across the relay.

Only authentication and decode failures are surfaced to the HTTP caller.
Everything raised while applying a rollout is recovered per workload.
"""

from __future__ import annotations


class KicdError(Exception):
    """Base class for relay errors."""


class AuthenticationFailure(KicdError):
    """Raised when a webhook signature is missing or does not match."""


class DecodeError(KicdError, ValueError):
    """Raised when a notification payload is malformed or incomplete."""


class SecretStoreError(KicdError):
    """Raised when signing keys cannot be loaded."""


class ControlPlaneQueryError(KicdError):
    """Raised when listing candidate workloads fails."""


class MalformedLabel(KicdError, ValueError):
    """Raised when a rollout label value cannot be decoded."""

    def __init__(self, value: str, reason: str) -> None:
        super().__init__(f"label value {value!r} is malformed: {reason}")
        self.value = value
        self.reason = reason


class InvalidContainerIndex(KicdError, IndexError):
    """Raised when a label points past the end of a workload's container list."""

    def __init__(self, index: int, container_count: int) -> None:
        super().__init__(
            f"container index {index} is out of range for {container_count} container(s)"
        )
        self.index = index
        self.container_count = container_count


class ConflictRetryExhausted(KicdError):
    """Raised when every optimistic update attempt hit a conflict."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"update still conflicting after {attempts} attempt(s)")
        self.attempts = attempts


class NotificationDeliveryFailure(KicdError):
    """Raised when the chat webhook rejects or cannot receive a message."""
