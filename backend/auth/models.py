from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=6)
    display_name: str = Field(min_length=1, max_length=100)
    timezone: str | None = Field(default=None, max_length=64)


class LoginRequest(BaseModel):
    username: str
    password: str


class AnonymousSignInRequest(BaseModel):
    timezone: str | None = Field(default=None, max_length=64)


class TokenResponse(BaseModel):
    access_token: str | None = None
    token_type: str = "bearer"


class UserResponse(BaseModel):
    id: int
    username: str
    display_name: str
    is_anonymous: bool
    timezone: str | None = None

    model_config = {"from_attributes": True}
