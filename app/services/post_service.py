"""
Post service: business logic for the Post aggregate.

Design notes
------------
- List and detail reads are cache-aside.  Cache keys encode every
  dimension that affects the result (page, size, search, sort).
- ``comments_count`` is not stored; it is counted on every read that misses
  the cache (one grouped COUNT for a listing page).  A failing count is
  logged and reported as 0, and that response is not cached.
- Cache write-backs are detached tasks: the response never waits for
  Redis, and a failed write-back is only logged.
- Writes commit in the repository before any key is dropped.
- Deleting a post deletes its comments too (see PostRepository.delete) and
  drops every cached comment tree of the post.  Its detail key is dropped
  again once pending write-backs for it have finished.
"""
import logging

from app.background import DetachedTasks, detached
from app.cache import CacheError, CacheManager, CacheMiss
from app.config import settings
from app.exceptions import (
    AuthorRequired,
    AuthorTooLong,
    ContentRequired,
    ContentTooLong,
    InvalidPostID,
    PostNotFound,
    TitleRequired,
    TitleTooLong,
    TransientInfraError,
)
from app.pagination import normalize_page, page_flags
from app.repositories.posts import PostRepository
from app.schemas import PostCreate, PostList, PostResponse
from app.tree_cache import CommentTreeCache

MAX_TITLE_LENGTH = 200
MAX_CONTENT_LENGTH = 10000
MAX_AUTHOR_LENGTH = 50


def validate_post(data: PostCreate) -> None:
    if not data.title:
        raise TitleRequired()
    if not data.content:
        raise ContentRequired()
    if not data.author:
        raise AuthorRequired()
    if len(data.title) > MAX_TITLE_LENGTH:
        raise TitleTooLong()
    if len(data.content) > MAX_CONTENT_LENGTH:
        raise ContentTooLong()
    if len(data.author) > MAX_AUTHOR_LENGTH:
        raise AuthorTooLong()


class PostService:
    def __init__(
        self,
        repository: PostRepository,
        cache: CacheManager,
        logger: logging.Logger | None = None,
        tasks: DetachedTasks = detached,
    ) -> None:
        self._repo = repository
        self._cache = cache
        self._comments_cache = CommentTreeCache(cache)
        self._log = logger or logging.getLogger(__name__)
        self._tasks = tasks

    def _cache_later(self, key: str, value: dict, ttl: int) -> None:
        self._tasks.spawn(
            self._cache.set(key, value, ttl=ttl),
            timeout=settings.CACHE_WRITE_TIMEOUT,
            description=f"Cache write-back {key!r}",
            key=key,
        )

    async def create_post(self, data: PostCreate) -> PostResponse:
        validate_post(data)
        post = await self._repo.create(data)
        try:
            await self._cache.invalidate_post()
        except CacheError as exc:
            self._log.warning("Failed to invalidate post listings: %s", exc)
        return post

    async def get_posts(
        self,
        page: int = 1,
        page_size: int = 10,
        search: str = "",
        sort_field: str = "created_at",
        sort_dir: str = "desc",
    ) -> PostList:
        """
        Return one page of posts with their comment counts.

        Two SQL statements are issued on a cache miss for the page itself,
        plus one grouped COUNT for the comment counts.
        """
        page, page_size = normalize_page(page, page_size)
        cache_key = self._cache.post_list_key(page, page_size, search, sort_field, sort_dir)
        try:
            cached = await self._cache.get(cache_key)
            return PostList(**cached)
        except CacheMiss:
            self._log.debug("Post list cache miss %r", cache_key)
        except CacheError as exc:
            self._log.warning("Post list cache read failed, using the database: %s", exc)
        except (TypeError, ValueError) as exc:
            self._log.warning("Discarding malformed post list entry %r: %s", cache_key, exc)

        posts, total = await self._repo.get_page(page, page_size, search, sort_field, sort_dir)
        cacheable = True
        try:
            counts = await self._repo.count_comments_by_post([p.id for p in posts])
        except TransientInfraError as exc:
            self._log.warning("Failed to count comments, reporting 0: %s", exc.__cause__)
            counts, cacheable = {}, False

        response = PostList(
            posts=[p.model_copy(update={"comments_count": counts.get(p.id, 0)}) for p in posts],
            total=total,
            page=page,
            page_size=page_size,
            **page_flags(page, page_size, total),
        )
        if cacheable:
            self._cache_later(cache_key, response.model_dump(mode="json"), settings.CACHE_TTL_LIST)
        return response

    async def get_post(self, post_id: int) -> PostResponse:
        if post_id <= 0:
            raise InvalidPostID()

        cache_key = self._cache.post_key(post_id)
        try:
            return PostResponse(**await self._cache.get(cache_key))
        except CacheMiss:
            self._log.debug("Post cache miss post_id=%d", post_id)
        except CacheError as exc:
            self._log.warning("Post cache read failed, using the database: %s", exc)
        except (TypeError, ValueError) as exc:
            self._log.warning("Discarding malformed post entry %r: %s", cache_key, exc)

        post = await self._repo.get_by_id(post_id)
        try:
            post.comments_count = await self._repo.count_comments(post_id)
        except TransientInfraError as exc:
            self._log.warning(
                "Failed to count comments for post_id=%d, reporting 0: %s", post_id, exc.__cause__
            )
            return post

        self._cache_later(cache_key, post.model_dump(mode="json"), settings.CACHE_TTL_DETAIL)
        return post

    async def delete_post(self, post_id: int) -> None:
        if post_id <= 0:
            raise InvalidPostID()
        if not await self._repo.exists(post_id):
            raise PostNotFound()

        await self._repo.delete(post_id)
        detail_key = self._cache.post_key(post_id)
        try:
            await self._comments_cache.invalidate_post(post_id)
            # A detail write-back still in flight would bring the post back.
            await self._tasks.settle(detail_key)
            await self._cache.delete(detail_key)
        except CacheError as exc:
            self._log.warning("Failed to invalidate caches for post_id=%d: %s", post_id, exc)
