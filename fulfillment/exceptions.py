"""Error taxonomy for the fulfillment core.

- ConfigurationError: store unreachable or misconfigured at startup. Fatal.
- TransitionRejected / MalformedPayload: validation errors. Surfaced to the
  caller, never retried automatically.
- OrderNotFound / TransientError: retried by the webhook ledger with
  bounded exponential backoff.
"""


class FulfillmentError(Exception):
    """Base class for every error raised by the fulfillment core."""


class ConfigurationError(FulfillmentError):
    """The service cannot run: missing settings or no store connectivity."""


class TransitionRejected(FulfillmentError):
    """A status change that is not in the transition table."""

    def __init__(self, current, target, field="status", reason=None):
        self.current = current
        self.target = target
        self.field = field
        message = f"Cannot transition {field} from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)

    def to_dict(self):
        return {
            "error": str(self),
            "field": self.field,
            "from": self.current,
            "to": self.target,
        }


class MalformedPayload(FulfillmentError):
    """A webhook payload that can never be applied, however often retried."""


class OrderNotFound(FulfillmentError):
    """Correlation data did not resolve to an order (yet)."""


class TransientError(FulfillmentError):
    """Downstream timeout or temporary store unavailability."""
