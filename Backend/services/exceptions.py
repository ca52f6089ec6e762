"""Error hierarchy for the credit workflow."""

from typing import List, Tuple


class CreditWorkflowError(Exception):
    """Base exception for every workflow failure surfaced to an operator."""


class MissingInputError(CreditWorkflowError):
    """Required fields or files are missing; nothing was sent over the network."""


class ApplicationNotFoundError(CreditWorkflowError):
    """No application with that id in the current collection."""


class InvalidTransitionError(CreditWorkflowError):
    """The application is not in a state that allows the requested action."""


class WorkflowBusyError(CreditWorkflowError):
    """Another foreground transition is still running."""


class ShallowRecordError(CreditWorkflowError):
    """A decision was attempted on a summary record that lacks the AI result."""


class HighRiskConfirmationRequired(CreditWorkflowError):
    """The approved limit exceeds the liberal bound and was not confirmed."""

    def __init__(self, approved_limit: float, liberal_limit: float):
        self.approved_limit = approved_limit
        self.liberal_limit = liberal_limit
        super().__init__(
            f"Approved limit {approved_limit:,.0f} exceeds the liberal bound "
            f"{liberal_limit:,.0f}; explicit confirmation is required"
        )


class IdentityMismatchError(CreditWorkflowError):
    """One or more risk reports do not belong to the applicant."""

    def __init__(self, mismatches: List[Tuple[str, str, str]]):
        # (document kind, file name, reason)
        self.mismatches = mismatches
        details = "; ".join(f"{name} ({kind}): {reason}" for kind, name, reason in mismatches)
        super().__init__(f"Identity check failed: {details}")


class PinError(CreditWorkflowError):
    """The director PIN is malformed or does not match."""


class AIGatewayError(CreditWorkflowError):
    """The AI service failed, returned nothing, or returned unparseable output."""


class RemoteStoreError(CreditWorkflowError):
    """HTTP failure or a ``success: false`` envelope from the remote store."""


class StaleDataError(RemoteStoreError):
    """The remote store rejected a write because the record changed underneath."""
