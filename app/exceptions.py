"""
Error kinds raised by the service and store layers.

Every class carries the HTTP status and default message the API answers
with; ``app.main`` registers one handler for ``BlogError`` so routers never
translate errors themselves.
"""


class BlogError(Exception):
    status_code: int = 500
    detail: str = "Internal server error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Client errors: bad input
# ---------------------------------------------------------------------------

class ValidationError(BlogError):
    status_code = 400
    detail = "Invalid request"


class InvalidPostID(ValidationError):
    detail = "invalid post ID"


class InvalidCommentID(ValidationError):
    detail = "invalid comment ID"


class ContentRequired(ValidationError):
    detail = "content is required"


class ContentTooLong(ValidationError):
    detail = "content is too long"


class AuthorRequired(ValidationError):
    detail = "author is required"


class AuthorTooLong(ValidationError):
    detail = "author is too long"


class TitleRequired(ValidationError):
    detail = "title is required"


class TitleTooLong(ValidationError):
    detail = "title is too long"


# ---------------------------------------------------------------------------
# Client errors: missing resources
# ---------------------------------------------------------------------------

class NotFoundError(BlogError):
    status_code = 404
    detail = "Not found"


class CommentNotFound(NotFoundError):
    detail = "Comment not found"


class PostNotFound(NotFoundError):
    detail = "Post not found"


# ---------------------------------------------------------------------------
# Client errors: references and constraints
# ---------------------------------------------------------------------------

class ConflictError(BlogError):
    status_code = 409
    detail = "Conflict"


class InvalidParentID(ConflictError):
    status_code = 400
    detail = "Parent comment not found"


class ConstraintViolation(ConflictError):
    detail = "The store rejected the row"


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------

class TransientInfraError(BlogError):
    """Store transport failure that survived every retry attempt."""

    status_code = 500
    detail = "Internal server error"
