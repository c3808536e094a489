import uuid
from http import HTTPStatus
from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse

from signaldesk.domain.errors import DomainError, NotFoundError

PROBLEM_BASE = "https://signaldesk.dev/problems"
PROBLEM_TYPE_VALIDATION = f"{PROBLEM_BASE}/validation-error"
PROBLEM_TYPE_DOMAIN = f"{PROBLEM_BASE}/domain-error"
PROBLEM_TYPE_NOT_FOUND = f"{PROBLEM_BASE}/not-found"
PROBLEM_TYPE_SERVER = f"{PROBLEM_BASE}/server-error"

_DEFAULT_TYPES = {
    status.HTTP_404_NOT_FOUND: PROBLEM_TYPE_NOT_FOUND,
    status.HTTP_422_UNPROCESSABLE_ENTITY: PROBLEM_TYPE_VALIDATION,
}


def request_id_for(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
    if not request_id:
        request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    return request_id


def problem_details(
    request: Request,
    *,
    status: int,
    title: str | None,
    detail: str,
    errors: list[dict[str, Any]] | None = None,
    type_: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render an RFC 7807 body; the request id is echoed in the body and header."""

    request_id = request_id_for(request)
    if not title:
        try:
            title = HTTPStatus(status).phrase
        except ValueError:
            title = "Error"
    if not type_:
        type_ = _DEFAULT_TYPES.get(status) or (PROBLEM_TYPE_SERVER if status >= 500 else PROBLEM_TYPE_DOMAIN)
    response = JSONResponse(
        status_code=status,
        content={
            "type": type_,
            "title": title,
            "status": status,
            "detail": detail,
            "request_id": request_id,
            "errors": errors or [],
        },
        headers=headers,
        media_type="application/problem+json",
    )
    response.headers.setdefault("X-Request-ID", request_id)
    return response


def domain_problem(request: Request, exc: DomainError) -> JSONResponse:
    not_found = isinstance(exc, NotFoundError)
    return problem_details(
        request=request,
        status=status.HTTP_404_NOT_FOUND if not_found else status.HTTP_400_BAD_REQUEST,
        title=exc.title,
        detail=exc.detail,
        errors=exc.errors,
        type_=PROBLEM_TYPE_NOT_FOUND if not_found else PROBLEM_TYPE_DOMAIN,
    )
