"""
Error responses shared by the routers.

Every error body is ``{"detail": {"code": ..., "message": ...}}``.
"""
from fastapi import HTTPException

NOT_FOUND = 'NOT_FOUND'
INVALID_REQUEST = 'INVALID_REQUEST'
JOB_ALREADY_RUNNING = 'JOB_ALREADY_RUNNING'
AUDIO_GENERATING = 'AUDIO_GENERATING'


def api_error(status_code: int, code: str, message: str, **extra) -> HTTPException:
    return HTTPException(status_code=status_code, detail={'code': code, 'message': message, **extra})


def not_found(message: str) -> HTTPException:
    return api_error(404, NOT_FOUND, message)


def invalid_request(message: str) -> HTTPException:
    return api_error(400, INVALID_REQUEST, message)
