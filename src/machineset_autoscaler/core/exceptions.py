#!/usr/bin/env python3
"""
Error taxonomy for the autoscaler

Poller-level errors (fetch, decode) are absorbed by the pollers and only
withhold a publication. Actuation errors abort the current scale operation.
"""

from typing import Optional


class AutoscalerError(Exception):
    """Base class for all autoscaler errors"""


class ConfigurationError(AutoscalerError):
    """Malformed or missing configuration"""


class FetchError(AutoscalerError):
    """A backlog query could not be completed"""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class RequestFailedError(FetchError):
    """Terminal non-success HTTP status"""

    def __init__(self, status_code: int, url: Optional[str] = None, reason: str = ""):
        super().__init__(f"request failed with status: {status_code} {reason}".rstrip(), url=url)
        self.status_code = status_code


class MaxRetriesExceededError(FetchError):
    """Transient status returned on every attempt"""

    def __init__(self, attempts: int, url: Optional[str] = None):
        super().__init__(f"max retries exceeded after {attempts} attempts", url=url)
        self.attempts = attempts


class FetchCancelledError(FetchError):
    """Shutdown requested while waiting to retry"""


class BacklogDecodeError(AutoscalerError):
    """Backlog payload could not be decoded into a pending count"""

    def __init__(self, instance_group: str, message: str):
        super().__init__(f"instance group '{instance_group}': {message}")
        self.instance_group = instance_group


class ActuationError(AutoscalerError):
    """A scale operation against the cluster failed"""


class MachineSetNotFoundError(ActuationError):
    pass


class MachineNotFoundError(ActuationError):
    pass


class NodeNotFoundError(ActuationError):
    pass


class ReplicasUnsetError(ActuationError):
    pass


class WriteConflictError(ActuationError):
    """The object changed between read and write (HTTP 409)"""


class ScaleDownError(ActuationError):
    """
    A scale-down step failed. Completed steps are not rolled back; the
    removal record keeps the last completed state.
    """

    def __init__(self, step: str, removal, cause: Optional[BaseException] = None):
        super().__init__(f"scale-down of machine '{removal.machine.name}' failed at step '{step}': {cause}")
        self.step = step
        self.removal = removal
        self.cause = cause
