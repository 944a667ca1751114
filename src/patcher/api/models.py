"""Pydantic models for HTTP API requests and responses."""

from typing import Optional
from pydantic import BaseModel, Field

from patcher.models.status import OperationState, StageEnum


class ProgressData(BaseModel):
    """Progress data nested in response."""

    stage: StageEnum = Field(..., description="Current lifecycle stage")
    state: OperationState = Field(
        OperationState.IDLE, description="Busy token of the state manager"
    )
    operation: Optional[str] = Field(None, description="Foreground operation name")
    progress: int = Field(..., ge=0, le=100, description="Percentage completion (0-100)")
    message: str = Field(..., description="Human-readable status description")
    error: Optional[str] = Field(
        None, description="Error code and message if stage == failed"
    )


class ProgressResponse(BaseModel):
    """GET /api/v1.0/progress response.

    Returns current status state with application-level status code.
    """

    code: int = Field(..., description="Application-level status code (200/500)")
    msg: str = Field(..., description="Status message or error description")
    data: ProgressData = Field(..., description="Progress data")
    stage: Optional[StageEnum] = Field(
        None, description="Current stage (for failed responses at root level)"
    )
    progress: Optional[int] = Field(
        None, description="Current progress (for failed responses at root level)"
    )


class CheckData(BaseModel):
    """Result of a silent update check."""

    update_available: bool = Field(..., description="Remote version is newer")
    local_version: str = Field("", description="Installed version ('' if unknown)")


class SuccessResponse(BaseModel):
    """Success response for command endpoints.

    Used by POST /update, /repair and /install when the operation starts.
    """

    code: int = Field(default=200, description="Application-level status code (200)")
    msg: str = Field(default="success", description="Success message")
    data: Optional[dict] = Field(None, description="Optional response data")


class ErrorResponse(BaseModel):
    """Error response for all endpoints.

    HTTP status code is always 200, real status in 'code' field.
    """

    code: int = Field(..., description="Application-level error code (409/500)")
    msg: str = Field(..., description="Error message with error code prefix")
    stage: Optional[StageEnum] = Field(
        None, description="Current stage (for operation state errors)"
    )
    progress: Optional[int] = Field(
        None, description="Current progress (for operation state errors)"
    )
