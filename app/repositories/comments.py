"""
Comment store adapter.

Design notes
------------
- Threads are stored as an adjacency list (``parent_id``).  Whole subtrees
  are read and deleted with a recursive CTE in a single statement, never
  with one query per level.
- ``get_forest`` seeds the same CTE with every root of a page at once so a
  page of top-level comments is populated with one query.
- Results are returned as ``CommentResponse`` models with empty
  ``children``; nesting is done by ``app.tree.build_tree``.
"""
from sqlalchemy import asc, delete, desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import CommentNotFound, ConstraintViolation
from app.models import Comment, Post
from app.retry import RetryPolicy, with_retry
from app.schemas import CommentCreate, CommentResponse

# Columns that are safe to sort by; anything else falls back to created_at.
_SORTABLE_COLUMNS: frozenset[str] = frozenset({"id", "created_at", "updated_at"})


def _resolve_sort_column(sort_field: str):
    if sort_field in _SORTABLE_COLUMNS:
        return getattr(Comment, sort_field)
    return Comment.created_at


def _descendants_cte(root_ids: list[int], post_id: int | None = None):
    """Recursive CTE yielding the ids of *root_ids* and all their descendants."""
    seed = select(Comment.id).where(Comment.id.in_(root_ids))
    if post_id is not None:
        seed = seed.where(Comment.post_id == post_id)
    tree = seed.cte("subtree", recursive=True)
    # UNION (not UNION ALL) so a malformed cycle cannot loop forever.
    return tree.union(select(Comment.id).join(tree, Comment.parent_id == tree.c.id))


def _to_response(rows) -> list[CommentResponse]:
    return [CommentResponse.model_validate(row) for row in rows]


class CommentRepository:
    def __init__(self, db: AsyncSession, retry_policy: RetryPolicy | None = None) -> None:
        self._db = db
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    async def _reset(self) -> None:
        await self._db.rollback()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @with_retry
    async def create(self, data: CommentCreate) -> CommentResponse:
        comment = Comment(
            post_id=data.post_id,
            parent_id=data.parent_id,
            content=data.content,
            author=data.author,
        )
        self._db.add(comment)
        try:
            await self._db.flush()
            await self._db.commit()
        except IntegrityError as exc:
            raise ConstraintViolation(f"comment rejected by the store: {exc.orig}") from exc
        return CommentResponse.model_validate(comment)

    @with_retry
    async def delete(self, comment_id: int) -> list[int]:
        """Delete *comment_id* and every descendant; return the deleted ids."""
        tree = _descendants_cte([comment_id])
        deleted = list((await self._db.execute(select(tree.c.id))).scalars())
        await self._db.execute(
            delete(Comment)
            .where(Comment.id.in_(deleted))
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        return deleted

    # ------------------------------------------------------------------
    # Point lookups
    # ------------------------------------------------------------------

    @with_retry
    async def exists(self, comment_id: int, post_id: int | None = None) -> bool:
        q = select(func.count()).select_from(Comment).where(Comment.id == comment_id)
        if post_id is not None:
            q = q.where(Comment.post_id == post_id)
        return (await self._db.execute(q)).scalar_one() > 0

    @with_retry
    async def post_exists(self, post_id: int) -> bool:
        q = select(func.count()).select_from(Post).where(Post.id == post_id)
        return (await self._db.execute(q)).scalar_one() > 0

    @with_retry
    async def get_by_id(self, comment_id: int) -> CommentResponse:
        result = await self._db.execute(select(Comment).where(Comment.id == comment_id))
        comment = result.scalar_one_or_none()
        if comment is None:
            raise CommentNotFound()
        return CommentResponse.model_validate(comment)

    # ------------------------------------------------------------------
    # Recursive reads
    # ------------------------------------------------------------------

    @with_retry
    async def get_tree(self, post_id: int, root_id: int) -> list[CommentResponse]:
        """Return *root_id* and all its descendants, flat, oldest first."""
        return await self._select_subtrees(post_id, [root_id])

    @with_retry
    async def get_forest(self, post_id: int, root_ids: list[int]) -> list[CommentResponse]:
        """Like ``get_tree`` for several roots in one query."""
        if not root_ids:
            return []
        return await self._select_subtrees(post_id, list(root_ids))

    async def _select_subtrees(self, post_id: int, root_ids: list[int]) -> list[CommentResponse]:
        tree = _descendants_cte(root_ids, post_id)
        q = (
            select(Comment)
            .where(Comment.id.in_(select(tree.c.id)))
            .order_by(Comment.created_at.asc(), Comment.id.asc())
        )
        result = await self._db.execute(q)
        return _to_response(result.scalars().all())

    @with_retry
    async def get_ancestor_ids(self, comment_id: int) -> list[int]:
        """Ids on the path from *comment_id* (inclusive) up to its top-level comment."""
        chain = (
            select(Comment.id, Comment.parent_id)
            .where(Comment.id == comment_id)
            .cte("ancestors", recursive=True)
        )
        chain = chain.union(
            select(Comment.id, Comment.parent_id).join(chain, Comment.id == chain.c.parent_id)
        )
        result = await self._db.execute(select(chain.c.id))
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Paginated listing
    # ------------------------------------------------------------------

    @with_retry
    async def get_page(
        self,
        post_id: int,
        parent_id: int | None,
        page: int,
        page_size: int,
        search: str = "",
        sort_field: str = "created_at",
        sort_dir: str = "desc",
    ) -> tuple[list[CommentResponse], int]:
        """
        Return one page of the comments directly under *parent_id* (top-level
        when None) plus the total number of matches ignoring pagination.

        Two statements share the same predicate: COUNT, then SELECT with
        ORDER BY / LIMIT / OFFSET.
        """
        filters = [Comment.post_id == post_id]
        if parent_id is None:
            filters.append(Comment.parent_id.is_(None))
        else:
            filters.append(Comment.parent_id == parent_id)
        if search:
            filters.append(Comment.content.icontains(search, autoescape=True))

        count_q = select(func.count()).select_from(Comment).where(*filters)
        total: int = (await self._db.execute(count_q)).scalar_one()

        direction = asc if sort_dir == "asc" else desc
        q = (
            select(Comment)
            .where(*filters)
            .order_by(direction(_resolve_sort_column(sort_field)), direction(Comment.id))
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self._db.execute(q)
        return _to_response(result.scalars().all()), total
