"""
Domain Exceptions for the Promise system

Every error the core raises to its callers inherits from PromiseServiceError
and carries a message plus structured details for the API response.

Author: Promise Tracker Core Team
Date: 2026-10-17
"""


class PromiseServiceError(Exception):
    """Base for all business-logic errors of the promise core"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        """Serialization for the API response"""
        return {
            "error": {
                "code": self.__class__.__name__,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationError(PromiseServiceError):
    """Malformed input: bad deadline, bad email, missing required field"""

    def __init__(self, message: str, field: str = None):
        super().__init__(
            message=message,
            details={"field": field} if field else {}
        )


class AuthorizationError(PromiseServiceError):
    """The actor's role does not allow the requested transition or edit"""

    def __init__(self, message: str, rule: str, promise_id: str = None):
        super().__init__(
            message=message,
            details={
                "rule": rule,
                "promise_id": promise_id
            }
        )


class NotFoundError(PromiseServiceError):
    """Unknown id"""

    def __init__(self, entity: str, entity_id: str, message: str = None):
        super().__init__(
            message=message or f"{entity.capitalize()} not found",
            details={
                "entity": entity,
                "id": entity_id
            }
        )


class NotFoundOrForbidden(NotFoundError):
    """
    The entity either does not exist or is not addressed to the caller.

    Both cases look identical from outside so that a caller cannot probe
    for promises it is not part of.
    """

    def __init__(self, entity: str, entity_id: str, message: str = None):
        super().__init__(
            entity=entity,
            entity_id=entity_id,
            message=message or f"{entity.capitalize()} not found or access denied"
        )


class ConflictError(PromiseServiceError):
    """Store constraint violation or a status that changed underneath the caller"""

    def __init__(self, message: str, hint: str = None):
        super().__init__(
            message=message,
            details={"hint": hint} if hint else {}
        )


# =============================================================================
# HTTP Status Mapping
# =============================================================================

EXCEPTION_TO_STATUS = {
    ValidationError: 400,
    AuthorizationError: 403,
    NotFoundError: 404,
    NotFoundOrForbidden: 404,
    ConflictError: 409,
}


def status_code_for(exc: PromiseServiceError) -> int:
    """Most specific HTTP status for an exception (walks the MRO)"""
    for klass in type(exc).__mro__:
        if klass in EXCEPTION_TO_STATUS:
            return EXCEPTION_TO_STATUS[klass]
    return 500
