import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ContractError(Exception):
    """Base class for errors raised by the signing and contract services."""

    status_code = 500
    code = "contract_error"

    def __init__(self, message: str, details: object = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ContractError):
    status_code = 400
    code = "validation_error"


class NotFoundError(ContractError):
    status_code = 404
    code = "not_found"


class ForbiddenError(ContractError):
    status_code = 403
    code = "forbidden"


class AlreadyUsedError(ContractError):
    status_code = 409
    code = "token_already_used"


class StateConflictError(ContractError):
    status_code = 409
    code = "invalid_state"


class TokenConflictError(StateConflictError):
    code = "token_conflict"


class ExpiredError(ContractError):
    status_code = 410
    code = "token_expired"


class RevokedError(ContractError):
    status_code = 410
    code = "token_revoked"


class DispatchError(ContractError):
    status_code = 500
    code = "dispatch_failed"


class RenderError(ContractError):
    status_code = 500
    code = "render_failed"


def _error_payload(code: str, message: str, details: object = None) -> dict:
    return {"code": code, "message": message, "details": details}


def register_error_handlers(app) -> None:
    @app.exception_handler(ContractError)
    async def contract_error_handler(request: Request, exc: ContractError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info(
                "%s %s rejected (%s): %s",
                request.method, request.url.path, exc.code, exc.message,
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(exc.code, exc.message, exc.details),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        missing = [".".join(str(part) for part in err["loc"][1:]) for err in exc.errors()]
        return JSONResponse(
            status_code=400,
            content=_error_payload(
                ValidationError.code,
                "Missing or invalid fields",
                [field for field in missing if field],
            ),
        )
