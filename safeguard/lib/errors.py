"""
Exception hierarchy raised by the engine.
"""


class SafeguardError(Exception):
    """Base class for engine errors."""


class PersistenceError(SafeguardError):
    """A read or write against the persistence collaborator failed."""


class NotFoundError(PersistenceError):
    def __init__(self, collection: str, key: str):
        super().__init__(f"{collection} {key!r} not found")
        self.collection = collection
        self.key = key


class DuplicateError(PersistenceError):
    def __init__(self, collection: str, key: str):
        super().__init__(f"{collection} {key!r} already exists")
        self.collection = collection
        self.key = key


class ConcurrencyConflictError(PersistenceError):
    """The row changed between read and conditional write."""

    def __init__(self, collection: str, key: str, expected_version: int):
        super().__init__(
            f"{collection} {key!r} was modified concurrently "
            f"(expected version {expected_version})"
        )
        self.collection = collection
        self.key = key
        self.expected_version = expected_version


class InvalidTransitionError(SafeguardError):
    """A state machine was asked for a transition it does not allow."""


class CompensationFailedError(SafeguardError):
    """A compensating action could not be applied after all retries."""


class ConfigError(SafeguardError):
    """Unknown SecurityConfig key or a value of the wrong type."""
