"""
Errors raised by the data-access layer itself.

Store failures (constraint violations, lost connections, concurrency
conflicts) are not wrapped: they surface as the SQLAlchemy exception the
session raised. An ambiguous single-row lookup surfaces as
``sqlalchemy.exc.MultipleResultsFound``.
"""


class RepositoryError(Exception):
    """Base class for repository / unit-of-work errors."""


class InvalidArgumentError(RepositoryError, ValueError):
    """A required argument is missing or names something the model does not have."""

    def __init__(self, message: str, argument: str = None):
        super().__init__(message)
        self.argument = argument
