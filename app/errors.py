"""Errors returned to clients. Each maps to one HTTP status and a short plain-text body."""


class UploadServerError(Exception):
    status_code = 500
    detail = "Internal Server Error"

    def __init__(self, message: str = None):
        # message is for logs only; clients always get ``detail``
        super().__init__(message or self.detail)


class BadRequest(UploadServerError):
    status_code = 400
    detail = "Bad Request: Missing file"


class UploadTooLarge(BadRequest):
    detail = "Bad Request: File too large"


class Unauthorized(UploadServerError):
    status_code = 401
    detail = "Unauthorized"


class NotFound(UploadServerError):
    status_code = 404
    detail = "Not Found"


class MethodNotAllowed(UploadServerError):
    status_code = 405
    detail = "Method not allowed"


class InternalError(UploadServerError):
    status_code = 500
    detail = "Internal Server Error"
