from typing import Optional
from uuid import uuid4

from fastapi import Request, Response

USER_ID_HEADER = "x-user-id"
SESSION_MAX_AGE = 60 * 60 * 24 * 30


class CurrentUserProvider:
    """Resolves the anonymous visitor behind a request.

    Used as a FastAPI dependency. The ``x-user-id`` header wins, then the
    session cookie; a visitor with neither gets a fresh id and a cookie.
    """

    def __init__(self, cookie_name: str = "cover_session", max_age: int = SESSION_MAX_AGE):
        self.cookie_name = cookie_name
        self.max_age = max_age

    def __call__(self, request: Request, response: Response) -> str:
        user_id = self._from_request(request)
        if user_id:
            return user_id
        user_id = uuid4().hex
        response.set_cookie(
            self.cookie_name, user_id, max_age=self.max_age, httponly=True, samesite="lax",
        )
        return user_id

    def _from_request(self, request: Request) -> Optional[str]:
        header = request.headers.get(USER_ID_HEADER, "").strip()
        if header:
            return header
        cookie = request.cookies.get(self.cookie_name, "").strip()
        return cookie or None
