"""Post store adapter."""
from sqlalchemy import asc, delete, desc, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import ConstraintViolation, PostNotFound
from app.models import Comment, Post
from app.retry import RetryPolicy, with_retry
from app.schemas import PostCreate, PostResponse

_SORTABLE_COLUMNS: frozenset[str] = frozenset({"id", "created_at", "title"})


def _resolve_sort_column(sort_field: str):
    if sort_field in _SORTABLE_COLUMNS:
        return getattr(Post, sort_field)
    return Post.created_at


class PostRepository:
    def __init__(self, db: AsyncSession, retry_policy: RetryPolicy | None = None) -> None:
        self._db = db
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    async def _reset(self) -> None:
        await self._db.rollback()

    @with_retry
    async def create(self, data: PostCreate) -> PostResponse:
        post = Post(title=data.title, content=data.content, author=data.author)
        self._db.add(post)
        try:
            await self._db.flush()
            await self._db.commit()
        except IntegrityError as exc:
            raise ConstraintViolation(f"post rejected by the store: {exc.orig}") from exc
        return PostResponse.model_validate(post)

    @with_retry
    async def exists(self, post_id: int) -> bool:
        q = select(func.count()).select_from(Post).where(Post.id == post_id)
        return (await self._db.execute(q)).scalar_one() > 0

    @with_retry
    async def get_by_id(self, post_id: int) -> PostResponse:
        result = await self._db.execute(select(Post).where(Post.id == post_id))
        post = result.scalar_one_or_none()
        if post is None:
            raise PostNotFound()
        return PostResponse.model_validate(post)

    @with_retry
    async def get_page(
        self,
        page: int,
        page_size: int,
        search: str = "",
        sort_field: str = "created_at",
        sort_dir: str = "desc",
    ) -> tuple[list[PostResponse], int]:
        """Return one page of posts plus the total matching count."""
        filters = []
        if search:
            filters.append(
                or_(
                    Post.title.icontains(search, autoescape=True),
                    Post.content.icontains(search, autoescape=True),
                )
            )

        count_q = select(func.count()).select_from(Post).where(*filters)
        total: int = (await self._db.execute(count_q)).scalar_one()

        direction = asc if sort_dir == "asc" else desc
        q = (
            select(Post)
            .where(*filters)
            .order_by(direction(_resolve_sort_column(sort_field)), direction(Post.id))
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self._db.execute(q)
        return [PostResponse.model_validate(p) for p in result.scalars().all()], total

    @with_retry
    async def count_comments(self, post_id: int) -> int:
        q = select(func.count()).select_from(Comment).where(Comment.post_id == post_id)
        return (await self._db.execute(q)).scalar_one()

    @with_retry
    async def count_comments_by_post(self, post_ids: list[int]) -> dict[int, int]:
        """Comment counts for several posts in one grouped query; absent ids count 0."""
        if not post_ids:
            return {}
        q = (
            select(Comment.post_id, func.count())
            .where(Comment.post_id.in_(post_ids))
            .group_by(Comment.post_id)
        )
        counts = {post_id: 0 for post_id in post_ids}
        for post_id, count in (await self._db.execute(q)).all():
            counts[post_id] = count
        return counts

    @with_retry
    async def delete(self, post_id: int) -> None:
        """Delete the post and every comment attached to it."""
        await self._db.execute(
            delete(Comment)
            .where(Comment.post_id == post_id)
            .execution_options(synchronize_session=False)
        )
        await self._db.execute(
            delete(Post).where(Post.id == post_id).execution_options(synchronize_session=False)
        )
        await self._db.commit()
