from typing import Optional
from utils.fastapi import ExceptionCode, HTTPJSONException

class CoreError(HTTPJSONException):
    '''
    Base for errors raised by the workflow services. Any CoreError aborts the enclosing unit of work.
    '''
    default_status = 400
    default_code = ExceptionCode.INVALID
    default_title = "Invalid Request"

    def __init__(self, message: str, title: Optional[str] = None, code: Optional[ExceptionCode] = None):
        super().__init__(
            title=title or self.default_title,
            message=message,
            status_code=self.default_status,
            code=code or self.default_code,
        )

    def __str__(self):
        return self.message

class ValidationError(CoreError):
    default_status = 400
    default_code = ExceptionCode.VALIDATION_ERROR
    default_title = "Invalid Input"

class ForbiddenError(CoreError):
    default_status = 403
    default_code = ExceptionCode.FORBIDDEN
    default_title = "Not Allowed"

class NotFoundError(CoreError):
    default_status = 404
    default_code = ExceptionCode.NOT_FOUND
    default_title = "Not Found"

class StateError(CoreError):
    default_status = 422
    default_code = ExceptionCode.INVALID_STATE
    default_title = "Invalid State"

class ConflictError(CoreError):
    default_status = 409
    default_code = ExceptionCode.CONFLICT
    default_title = "Conflict"

    def __init__(self, message: str, conflict_id: Optional[int] = None, title: Optional[str] = None, code: Optional[ExceptionCode] = None):
        super().__init__(message, title=title, code=code)
        self.conflict_id = conflict_id

class DocumentNumberCollision(Exception):
    '''
    Two writers generated the same document number. Retried at the service boundary.
    '''
