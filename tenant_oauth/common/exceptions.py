from urllib.parse import urlencode

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from loguru import logger

from tenant_oauth.common.urls import append_query


class OAuthException(Exception):
    """An RFC 6749 error returned directly to the caller as JSON."""

    def __init__(
        self,
        error: str,
        description: str | None = None,
        status_code: int = 400,
        headers: dict | None = None,
    ):
        self.error = error
        self.description = description
        self.status_code = status_code
        self.headers = headers or {}


class OAuthRedirectException(Exception):
    """
    An authorization error delivered to the client's redirect URI.

    Only raise this once the redirect URI has been matched against the
    application's registered set.
    """

    def __init__(
        self,
        redirect_uri: str,
        error: str,
        description: str | None = None,
        state: str | None = None,
    ):
        self.redirect_uri = redirect_uri
        self.error = error
        self.description = description
        self.state = state


class LoginRequiredException(Exception):
    def __init__(self, return_to: str):
        self.return_to = return_to


class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        headers: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.headers = headers or {}


class TokenValidationError(Exception):
    """Raised by JWTService when an access token cannot be trusted."""


def attach_exception_handlers(app: FastAPI, login_url: str):

    @app.exception_handler(OAuthException)
    async def oauth_exception_handler(request: Request, exc: OAuthException):
        body = {"error": exc.error}

        if exc.description:
            body["error_description"] = exc.description

        logger.warning(
            "oauth_error: path={} error={} description={}",
            request.url.path, exc.error, exc.description,
        )

        return JSONResponse(
            status_code=exc.status_code,
            content=body,
            headers={"Cache-Control": "no-store", **exc.headers},
        )

    @app.exception_handler(OAuthRedirectException)
    async def oauth_redirect_handler(request: Request, exc: OAuthRedirectException):
        logger.warning(
            "oauth_error_redirect: path={} error={} description={}",
            request.url.path, exc.error, exc.description,
        )
        location = append_query(
            exc.redirect_uri,
            error=exc.error,
            error_description=exc.description,
            state=exc.state,
        )
        return RedirectResponse(location, status_code=302)

    @app.exception_handler(LoginRequiredException)
    async def login_required_handler(request: Request, exc: LoginRequiredException):
        separator = "&" if "?" in login_url else "?"
        location = f"{login_url}{separator}{urlencode({'return_to': exc.return_to})}"
        return RedirectResponse(location, status_code=302)

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "status": False,
                "message": exc.message,
            },
            headers=exc.headers
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", "-")
        logger.bind(request_id=request_id).opt(exception=exc).error(
            "unhandled error on {} {}", request.method, request.url.path
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "error_description": "Internal server error",
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        messages = []

        for err in exc.errors():
            loc = err.get("loc", [])
            err_type = err.get("type", "")

            where = loc[0] if len(loc) > 0 else "request"
            field = loc[-1] if len(loc) > 1 else "field"

            if err_type == "missing":
                messages.append(f"missing field '{field}' in {where}")
            else:
                messages.append(f"invalid field '{field}' in {where}")

        # remove duplicates while preserving order
        messages = list(dict.fromkeys(messages))

        return JSONResponse(
            status_code=400,
            content={
                "status": False,
                "message": "Invalid request: " + ", ".join(messages),
            },
        )
