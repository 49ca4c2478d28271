"""Ultimate Control - Domain-specific errors.

Gateway helpers raise these; the catalog and executor catch them and turn
them into empty lists or failed outcomes.  Nothing here is meant to reach
the consumer thread.
"""


class UControlError(Exception):
    """Base error for the device core."""


class GatewayError(UControlError):
    """Raised when a tool or bus call does not complete successfully."""


class GatewayUnavailable(GatewayError):
    """Raised when the tool, bus or daemon cannot be reached at all."""


class ActionRejected(GatewayError):
    """Raised when an action call returned a non-success result."""


class ResolutionFailed(UControlError):
    """Raised when an identifier cannot be mapped to an object path."""


class PartialDataLoss(UControlError):
    """Raised when an auxiliary detail fetch fails for a single record."""
