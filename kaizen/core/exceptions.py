from fastapi import HTTPException, status
from typing import Any, List, Optional


# ---------------------------------------------------------------------------
# Token lifecycle errors. These never reach the client as-is: the auth
# dependencies collapse every TokenError into one 401 and log the class name.
# ---------------------------------------------------------------------------

class TokenError(Exception):
    """Base class for every reason a token is rejected."""


class MalformedToken(TokenError):
    """Credential cannot be split or decoded into header/payload/signature."""


class InvalidSignature(TokenError):
    """Signature does not verify, or the token uses an unexpected algorithm."""


class TokenNotFoundOrRevoked(TokenError):
    """Signature is fine but no token row backs the embedded id."""


class TokenExpired(TokenError):
    """Token row (or the signed expiry) is in the past."""


class TokenTypeMismatch(TokenError):
    """An access token was presented where a refresh token is required, or vice versa."""


class PersistenceFailure(Exception):
    """The token store could not be read or written."""


# ---------------------------------------------------------------------------
# HTTP errors
# ---------------------------------------------------------------------------

class NotAuthenticated(HTTPException):
    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthServiceUnavailable(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable",
        )


class EmailAlreadyExists(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered"
        )


class InvalidCredentials(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )


class CategoryNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Category not found"
        )


class JournalNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Journal entry not found"
        )


class APIKeyNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="API key not found"
        )


class APIError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        self.status_code = status_code
        self.message = message
        self.errors = errors or []
