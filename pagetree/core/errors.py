"""Taxonomie des erreurs métier.

Les services lèvent ces exceptions; l'application FastAPI les traduit en
réponses JSON ``{"detail", "error", "field"}`` via un seul handler.
"""

from typing import Optional


class PageTreeError(Exception):
    code = "INTERNAL"
    status_code = 500

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.code, "field": self.field}


class NotFound(PageTreeError):
    code = "NOT_FOUND"
    status_code = 404


class Forbidden(PageTreeError):
    code = "FORBIDDEN"
    status_code = 403


class CycleDetected(PageTreeError):
    code = "CYCLE_DETECTED"
    status_code = 409


class CrossTenantViolation(PageTreeError):
    code = "CROSS_TENANT_VIOLATION"
    status_code = 400


class InvalidState(PageTreeError):
    code = "INVALID_STATE"
    status_code = 409


class TypeMismatch(PageTreeError):
    code = "TYPE_MISMATCH"
    status_code = 422


class PropertyInUse(PageTreeError):
    code = "PROPERTY_IN_USE"
    status_code = 409

    def __init__(self, message: str, dependents: Optional[list] = None, field: Optional[str] = None):
        super().__init__(message, field)
        self.dependents = dependents or []

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["dependents"] = self.dependents
        return body


class OrderKeyExhausted(PageTreeError):
    # violation d'invariant interne, jamais une erreur utilisateur
    code = "ORDER_KEY_EXHAUSTED"
    status_code = 500
