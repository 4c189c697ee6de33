"""
Response cookie helpers.

Services decide *that* a cookie changes; the change is applied to whatever
response the current request eventually returns (after_this_request), so
error responses clear stale cookies too.
"""

from flask import after_this_request, current_app, has_request_context, request


ACCOUNTANT_SESSION_COOKIE = "accountant-session"
ACTIVE_COMPANY_COOKIE = "active-company"


def read_cookie(name: str) -> str | None:
    if not has_request_context():
        return None
    value = request.cookies.get(name)
    return value or None


def set_cookie(name: str, value: str, max_age: int) -> None:
    if not has_request_context():
        return

    secure = current_app.config.get("SESSION_COOKIE_SECURE", False)

    @after_this_request
    def _set(response):
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            path="/",
            httponly=True,
            secure=secure,
            samesite="Lax",
        )
        return response


def clear_cookie(name: str) -> None:
    if not has_request_context():
        return

    secure = current_app.config.get("SESSION_COOKIE_SECURE", False)

    @after_this_request
    def _clear(response):
        response.delete_cookie(name, path="/", httponly=True, secure=secure, samesite="Lax")
        return response
