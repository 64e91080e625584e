"""
Error taxonomy shared by the service layer and the HTTP layer.

Services raise these; blueprints and the app factory translate them into
re-rendered forms (ValidationError), 403 (AuthorizationError) and 404
(NotFoundError).
"""
from __future__ import annotations


class QAError(Exception):
    """Base class for request-scoped forum errors."""


class ValidationError(QAError):
    def __init__(self, errors: dict[str, list[str]]):
        self.errors = errors
        fields = ", ".join(sorted(errors))
        super().__init__(f"Invalid fields: {fields}")

    def messages(self) -> list[str]:
        return [msg for field in sorted(self.errors) for msg in self.errors[field]]


class AuthorizationError(QAError):
    def __init__(self, action: str, message: str = "You are not allowed to perform this action."):
        self.action = action
        super().__init__(message)


class NotFoundError(QAError):
    def __init__(self, entity_type: str, entity_id: object):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} does not exist.")
