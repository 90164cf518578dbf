from fastapi import Request, status
from fastapi.responses import JSONResponse


class PesquisaError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(PesquisaError):
    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(PesquisaError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(PesquisaError):
    status_code = status.HTTP_404_NOT_FOUND


class ValidationError(PesquisaError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class FetchError(PesquisaError):
    """The store could not be read; the caller may retry manually."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


async def pesquisa_error_handler(request: Request, exc: PesquisaError) -> JSONResponse:
    headers = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code, content={"detail": exc.message}, headers=headers
    )
