"""
Error taxonomy and structured results for the authorization engine.

Services return a Result instead of raising, so the HTTP layer can translate
outcomes directly into responses of the form:

    {"error": true, "message": "...", "code": 400, "errors": ["x:y"]}
"""
import functools
from typing import Any, List, Optional
from pydantic import BaseModel, Field

from app.utils import get_logger


log = get_logger(__name__)


class AuthzError(Exception):
    """Base class for all domain errors."""
    code: int = 500

    def __init__(self, message: str, errors: Optional[List[str]] = None, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.errors = list(errors or [])
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, Any]:
        return {"error": True, "message": self.message, "code": self.code, "errors": self.errors}


class NotFoundError(AuthzError):
    code = 404


class RoleNotFound(NotFoundError):
    def __init__(self, message: str = "Role not found", errors: Optional[List[str]] = None):
        super().__init__(message, errors)


class PermissionNotFound(NotFoundError):
    def __init__(self, message: str = "Permission not found", errors: Optional[List[str]] = None):
        super().__init__(message, errors)


class UserNotFound(NotFoundError):
    def __init__(self, message: str = "User not found", errors: Optional[List[str]] = None):
        super().__init__(message, errors)


class CredentialNotFound(NotFoundError):
    def __init__(self, message: str = "API key not found", errors: Optional[List[str]] = None):
        super().__init__(message, errors)


class AuthenticationError(AuthzError):
    """A presented credential is unknown, expired or revoked."""
    code = 401


class ValidationError(AuthzError):
    """Requested values fall outside what is allowed, or collide with a unique value."""
    code = 400


class ConflictError(AuthzError):
    """A versioned write lost a race with a concurrent writer."""
    code = 409


class DataIntegrityError(AuthzError):
    """A seed record references data that does not exist."""
    code = 400


class InternalError(AuthzError):
    code = 500


class Result(BaseModel):
    """Structured outcome of a service operation."""
    error: bool = False
    message: str = ""
    code: int = 200
    data: Any = None
    errors: List[str] = Field(default_factory=list)

    model_config = {"arbitrary_types_allowed": True}

    @classmethod
    def ok(cls, data: Any = None, message: str = "", code: int = 200) -> "Result":
        return cls(error=False, message=message, code=code, data=data)

    @classmethod
    def from_error(cls, exc: AuthzError) -> "Result":
        return cls(error=True, message=exc.message, code=exc.code, errors=exc.errors)

    def raise_for_error(self) -> "Result":
        """Re-raise a failed result as the matching AuthzError (used at the HTTP boundary)."""
        if self.error:
            raise AuthzError(self.message, self.errors, code=self.code)
        return self


def returns_result(func):
    """
    Turn errors raised by a service coroutine into failed Results.

    The decorated method's owner must provide an async ``rollback()`` that
    discards any half-applied writes.
    """
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs) -> Result:
        try:
            return await func(self, *args, **kwargs)
        except AuthzError as e:
            log.info(f"{func.__name__} failed: {e.message} {e.errors or ''}".rstrip())
            await self.rollback()
            return Result.from_error(e)
        except Exception as e:
            log.error(f"Unexpected error in {func.__name__}: {e}", exc_info=True)
            await self.rollback()
            return Result.from_error(InternalError("Internal server error"))
    return wrapper
