"""Shared building blocks: enums, RFC 7807 errors, field encryption,
legacy id resolution, audit trail and pagination."""

from backend.common.audit import AuditTrail, create_audit_entry
from backend.common.crypto import FieldCipher, get_cipher
from backend.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    InsufficientEligibilityException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.common.references import ReferenceIndex, parse_ref

__all__ = [
    "AppException",
    "AuditTrail",
    "ConflictError",
    "FieldCipher",
    "ForbiddenException",
    "InsufficientEligibilityException",
    "InvalidTransitionException",
    "NotFoundException",
    "PaginatedResponse",
    "PaginationParams",
    "ReferenceIndex",
    "ValidationException",
    "create_audit_entry",
    "get_cipher",
    "paginate",
    "parse_ref",
]
