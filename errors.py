"""Error types raised by the vault core.

Each error carries the HTTP status and a short machine code; ``app.py``
renders them as ``{"error": message, "code": code}``.
"""


class VaultError(Exception):
    status_code = 400
    code = "error"
    message = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.detail = message or self.message


# Validation
class UsernameTooShort(VaultError):
    code = "username_too_short"
    message = "Username must be at least 3 characters"


class PasswordTooShort(VaultError):
    code = "password_too_short"
    message = "Password must be at least 6 characters"


class InvalidPath(VaultError):
    code = "invalid_path"
    message = "Path is outside root"


# Conflict
class UsernameTaken(VaultError):
    status_code = 409
    code = "username_taken"
    message = "Username already exists"


# Authentication
class UserNotFound(VaultError):
    status_code = 404
    code = "user_not_found"
    message = "No account with that username"


class InvalidPassword(VaultError):
    status_code = 401
    code = "invalid_password"
    message = "Wrong password"


class Unauthorized(VaultError):
    status_code = 401
    code = "unauthorized"
    message = "Unauthorized"


# Not found
class NotFound(VaultError):
    status_code = 404
    code = "not_found"
    message = "Photo not found"


class FileMissing(VaultError):
    status_code = 404
    code = "file_missing"
    message = "File missing on disk"


# Media processing
class UnsupportedType(VaultError):
    status_code = 415
    code = "unsupported_type"
    message = "Only image files are allowed"


class ConversionFailed(VaultError):
    status_code = 422
    code = "conversion_failed"
    message = "Could not convert HEIC image"
