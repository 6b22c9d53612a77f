"""Errors raised when a pull cannot honour its preconditions."""


class PullError(Exception):
    """Base exception for all pull-related errors."""


class MissingFormDefinitionError(PullError):
    """Raised when a submission key is needed but no blank form was downloaded."""


class MissingCursorError(PullError):
    """Raised when reading the cursor of a pull result that has none."""


class MalformedCursorError(PullError):
    """Raised when a cursor fragment is not parseable XML."""


class HttpError(PullError):
    """Raised when reading the body of a failed response."""

    def __init__(self, response):
        self.response = response
        super().__init__(f"HTTP {response.status_code} {response.reason} ({response.url})")
