"""
Error taxonomy for the lifecycle engine.

Components raise these internally and convert them into result objects
(see utils.failure_result) at their public boundary. Handlers map the
``status_code`` onto the HTTP response.
"""


class LifecycleError(Exception):
    """Base class for all lifecycle engine errors."""
    code = 'LifecycleError'
    status_code = 500

    def __init__(self, message: str = ''):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class InvalidTransition(LifecycleError):
    """Status graph violation."""
    code = 'InvalidTransition'
    status_code = 400


class PermissionDenied(LifecycleError, PermissionError):
    """Subject is not allowed to perform the action."""
    code = 'PermissionDenied'
    status_code = 403


class NotFound(LifecycleError):
    code = 'NotFound'
    status_code = 404


class Conflict(LifecycleError):
    """Duplicate contribution, already-accepted task, or a lost race."""
    code = 'Conflict'
    status_code = 409


class StorageFailure(LifecycleError):
    """Blob upload/delete failure after retries were exhausted."""
    code = 'StorageFailure'
    status_code = 502


class IntegrityDrift(LifecycleError):
    """Mutable status disagrees with the append-only history."""
    code = 'IntegrityDrift'
    status_code = 409


class ValidationFailed(LifecycleError):
    """Submitted content does not satisfy the content rules."""
    code = 'ValidationFailed'
    status_code = 422

    def __init__(self, message: str = '', errors=None):
        super().__init__(message)
        self.errors = list(errors or [])


class StoreError(LifecycleError):
    """Unexpected error from the record store."""
    code = 'StoreError'
    status_code = 500
