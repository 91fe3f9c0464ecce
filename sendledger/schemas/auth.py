from pydantic import BaseModel, Field


class PasswordResetValidateRequest(BaseModel):
    """Request body for checking a password reset token."""

    token: str = Field(min_length=1, max_length=255)


class PasswordResetValidateResponse(BaseModel):
    """Whether a reset token can still be used."""

    valid: bool
