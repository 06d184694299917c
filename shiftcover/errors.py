class ShiftCoverError(Exception):
    """
    Base error. `message` is shown to the caller verbatim.
    """

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(ShiftCoverError):
    status_code = 401


class AuthorizationError(ShiftCoverError):
    status_code = 403


class ValidationError(ShiftCoverError):
    status_code = 400


class NotFoundError(ShiftCoverError):
    status_code = 404


class ConflictError(ShiftCoverError):
    status_code = 409


class IdentityProviderError(ShiftCoverError):
    status_code = 400


class EmailDeliveryError(ShiftCoverError):
    status_code = 502
