class RelayError(Exception):
    """Base class for failures that end a playlist request early."""

    status = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ClientInputError(RelayError):
    status = 400


class ForbiddenHostError(RelayError):
    status = 403


class TooManyRedirectsError(RelayError):
    status = 502


class UpstreamNetworkError(RelayError):
    status = 502


class UpstreamTimeoutError(RelayError):
    status = 504
