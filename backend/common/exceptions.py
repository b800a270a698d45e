"""Application errors and their RFC 7807 (application/problem+json) rendering.

Every error the API returns has the same body::

    {"type": ".../errors/<slug>", "title": ..., "status": ..., "detail": ...,
     "instance": "<request path>", "errors": {"<field>": ["<message>", ...]}}

``errors`` is present only when there is something field-specific to say.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

logger = logging.getLogger(__name__)

PROBLEM_BASE_URI = "https://uniforms.example.com/errors"
PROBLEM_MEDIA_TYPE = "application/problem+json"


class AppException(Exception):
    """Base error; subclasses pin ``status_code``, ``error_type`` and ``title``."""

    status_code: int = 500
    error_type: str = "internal-error"
    title: str = "Internal Error"

    def __init__(self, detail: str, errors: Optional[dict[str, list[str]]] = None) -> None:
        self.detail = detail
        self.errors = errors
        super().__init__(detail)

    def problem(self, instance: str) -> dict[str, Any]:
        return _problem(self.status_code, self.error_type, self.title, self.detail, instance, self.errors)


class NotFoundException(AppException):
    status_code = 404
    error_type = "not-found"
    title = "Not Found"

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id '{entity_id}' does not exist.")
        self.entity_type = entity_type


class ConflictError(AppException):
    """An active record already holds the same key (e.g. a duplicate rule target)."""

    status_code = 409
    error_type = "conflict"
    title = "Conflict"

    def __init__(self, field: str, value: Any) -> None:
        super().__init__(
            f"An active entry with {field}='{value}' already exists.",
            {field: [f"'{value}' is already in use."]},
        )


class ForbiddenException(AppException):
    status_code = 403
    error_type = "forbidden"
    title = "Forbidden"

    def __init__(self, detail: str = "Missing or invalid API key.") -> None:
        super().__init__(detail)


class ValidationException(AppException):
    """Business-rule failures, keyed by the offending field."""

    status_code = 422
    error_type = "validation-error"
    title = "Validation Error"

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__("One or more fields failed validation.", errors)


class InsufficientEligibilityException(ValidationException):
    """An order asks for more of a category than the employee has left.

    ``shortfalls`` maps category tag → (requested, remaining).
    """

    error_type = "insufficient-eligibility"

    def __init__(self, shortfalls: Mapping[str, tuple[int, int]]) -> None:
        super().__init__({
            "items": [
                f"Requested {requested} {category} but only {left} remaining."
                for category, (requested, left) in sorted(shortfalls.items())
            ]
        })
        self.shortfalls = dict(shortfalls)


class InvalidTransitionException(ValidationException):
    """The admin action is not allowed from the entity's current status."""

    error_type = "invalid-transition"

    def __init__(self, entity_type: str, current: str, action: str) -> None:
        super().__init__({"status": [f"Cannot {action} a {entity_type} in status '{current}'."]})
        self.current = current
        self.action = action


def _problem(
    status: int,
    error_type: str,
    title: str,
    detail: str,
    instance: str,
    errors: Optional[dict[str, list[str]]] = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{PROBLEM_BASE_URI}/{error_type}",
        "title": title,
        "status": status,
        "detail": detail,
        "instance": instance,
    }
    if errors:
        body["errors"] = errors
    return body


def _respond(status: int, body: dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status, content=body, media_type=PROBLEM_MEDIA_TYPE)


async def _handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
    return _respond(exc.status_code, exc.problem(request.url.path))


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Drop the leading "body"/"query"/"path" segment so keys match field names
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        name = ".".join(loc[1:]) if len(loc) > 1 else (loc[0] if loc else "unknown")
        errors.setdefault(name, []).append(err.get("msg", "Invalid value"))
    return _respond(
        422,
        _problem(422, "validation-error", "Validation Error",
                 "Request validation failed.", request.url.path, errors),
    )


async def _handle_integrity_error(request: Request, exc: IntegrityError) -> JSONResponse:
    # Unique indexes back the service-level duplicate checks; a race lands here
    logger.warning("Integrity error on %s: %s", request.url.path, exc.orig)
    return _respond(
        409,
        _problem(409, "conflict", "Conflict",
                 "The change conflicts with an existing record.", request.url.path),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, _handle_app_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_request_validation)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _handle_integrity_error)  # type: ignore[arg-type]
