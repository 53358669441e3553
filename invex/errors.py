"""
Exception hierarchy for invex

Services raise these; processors report partial failures through
``ProcessingResult`` instead.
"""

from typing import Optional


class InvexError(Exception):
    """Base class for all invex errors"""


class InputValidationError(InvexError):
    """Malformed or missing input"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(InvexError):
    """Entity does not exist, or the caller is not a member of its company"""


class PermissionDeniedError(InvexError):
    """Caller is a company member but lacks the required capability"""


class BusinessRuleError(InvexError):
    """Operation violates a business rule; nothing was written"""


class InvalidTransitionError(BusinessRuleError):
    """Lifecycle transition not allowed from the current status"""

    def __init__(self, message: str, current_status: Optional[str] = None, action: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status
        self.action = action


class PostingRejectedError(BusinessRuleError):
    """GL posting refused by the posting validator"""

    def __init__(self, decision):
        super().__init__(decision.message)
        self.decision = decision
        self.reason = decision.reason


class ConflictError(InvexError):
    """Record changed since it was read; the caller may reload and retry"""


class ExternalServiceError(InvexError):
    """A collaborator (text extraction, ledger provider, storage) failed"""
