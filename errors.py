"""
Error types raised by the stores and the authorization layer.

Each error carries the HTTP status it is answered with; the handlers in
main.py turn them into `{"error": message}` responses.
"""


class ShopError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ShopError):
    status_code = 400


class AuthenticationError(ShopError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class AuthorizationError(ShopError):
    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFoundError(ShopError):
    status_code = 404


class StorageError(ShopError):
    status_code = 500

    def __init__(self, message: str = "Internal Server Error"):
        super().__init__(message)
