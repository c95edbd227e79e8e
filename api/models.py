"""
API request and response models for the library portal auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login.

    Both fields are optional at the schema level so a missing field reaches
    the service and produces the documented 400 message instead of a
    framework validation error.
    """

    email: Optional[str] = Field(default=None, max_length=320)
    password: Optional[str] = Field(default=None, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: Optional[str] = None
    role: str


class LoginResponse(BaseModel):
    """Response for a successful POST /api/auth/login."""

    model_config = ConfigDict(frozen=True)

    message: str = "Login successful"
    token: str
    user: LoginUser


class SessionUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    role: str
    email: str
    name: Optional[str] = None
    username: Optional[str] = None
    avatar: Optional[str] = None
    created_at: Optional[str] = Field(default=None, serialization_alias="createdAt")
    last_login: Optional[str] = Field(default=None, serialization_alias="lastLogin")


class SessionResponse(BaseModel):
    """Response for GET /auth/session when a valid session cookie is present."""

    model_config = ConfigDict(frozen=True)

    user: SessionUser
    expires: str


class ErrorResponse(BaseModel):
    """Error envelope returned on 4xx/5xx responses: {"error": "<message>"}."""

    model_config = ConfigDict(frozen=True)

    error: str


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
