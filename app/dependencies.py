from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.cache import cache
from app.database import get_db
from app.pagination import normalize_page
from app.repositories.comments import CommentRepository
from app.repositories.posts import PostRepository
from app.services.comment_service import CommentService
from app.services.post_service import PostService
from app.tree_cache import CommentTreeCache


class PaginationParams:
    """
    Reusable FastAPI dependency that parses pagination / sorting / search
    query parameters.

    Usage in a router::

        @router.get("/posts")
        async def list_posts(pagination: PaginationParams = Depends()):
            ...

    Attributes
    ----------
    page:
        1-based page number; anything below 1 becomes 1.
    page_size:
        Items per page; anything below 1 becomes the default page size and
        anything above ``settings.MAX_PAGE_SIZE`` is capped.
    sort_by:
        Column name to sort by.  Repositories fall back to ``created_at``
        for names they do not recognise.
    sort_order:
        ``"asc"`` or ``"desc"``; anything else is treated as ``"desc"``.
    search:
        Case-insensitive substring filter; empty means no filter.
    """

    def __init__(
        self,
        page: int = Query(1, description="Page number (1-based)."),
        page_size: int = Query(10, description="Number of items returned per page (max 100)."),
        sort_by: str = Query("created_at", description="Column name to sort results by."),
        sort_order: str = Query("desc", description="Sort direction: 'asc' or 'desc'."),
        search: str = Query("", description="Substring to search for."),
    ) -> None:
        self.page, self.page_size = normalize_page(page, page_size)
        self.sort_by = sort_by
        self.sort_order = sort_order if sort_order in ("asc", "desc") else "desc"
        self.search = search


# ---------------------------------------------------------------------------
# Service wiring: one service per request, bound to the request's session
# ---------------------------------------------------------------------------

def get_comment_service(db: AsyncSession = Depends(get_db)) -> CommentService:
    return CommentService(CommentRepository(db), CommentTreeCache(cache))


def get_post_service(db: AsyncSession = Depends(get_db)) -> PostService:
    return PostService(PostRepository(db), cache)
