import enum

from pydantic import BaseModel, Field

class ExceptionCode(enum.Enum):
    INVALID_LOGIN = 'invalid_login'
    SERVER_ERROR = 'server_error'
    INVALID = 'invalid'

    # Core workflow errors
    VALIDATION_ERROR = 'validation_error'
    FORBIDDEN = 'forbidden'
    NOT_FOUND = 'not_found'
    APPOINTMENT_IN_PROGRESS = 'appointment_in_progress'
    CONFLICT = 'conflict'
    INVALID_STATE = 'invalid_state'

class HTTPJSONException(Exception):
    def __init__(self, title: str, message: str, status_code: int = 400, code: ExceptionCode = ExceptionCode.INVALID):
        self.status_code = status_code
        self.code = code
        self.title = title
        self.message = message

class RespStatus(str, enum.Enum):
    success = "success"
    failed = "failed"

class ErrorResponse(BaseModel):
    code: str
    title: str
    message: str
    conflict_id: int | None = Field(default=None, description="Entity blocking the operation, if any")

class SuccessResp(BaseModel):
    success: bool

class CreateResp(BaseModel):
    id: int

default_resp = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    403: {"model": ErrorResponse, "description": "Actor is not allowed to perform the operation"},
    404: {"model": ErrorResponse, "description": "Referenced record not found"},
    409: {"model": ErrorResponse, "description": "Operation conflicts with another record"},
    422: {"model": ErrorResponse, "description": "Operation not allowed in the current state"},
}
