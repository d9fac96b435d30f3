"""
Comment service: threaded comments for the Post aggregate.

Design notes
------------
- Reads are cache-aside in two layers: a page of top-level comments is
  cached whole, and every top-level comment's subtree is cached on its own
  so that a rebuilt page reuses the threads that did not change.  On a page
  miss the missing subtrees are loaded with one recursive query.
- Writes are committed by the store first; invalidation afterwards is best
  effort.  A
  cache failure is logged and never turns a committed write into an error.
- A reply changes the cached subtree of its parent and of every ancestor
  above it, so the ancestor chain is read before the write and each of
  those subtree keys is dropped.  If that lookup fails every subtree key of
  the post is dropped instead.
- Search results are flat: matching comments are returned without their
  replies.
"""
import logging

from app.cache import CacheError, CacheMiss
from app.exceptions import (
    AuthorRequired,
    AuthorTooLong,
    CommentNotFound,
    ContentRequired,
    ContentTooLong,
    InvalidCommentID,
    InvalidParentID,
    InvalidPostID,
    PostNotFound,
    TransientInfraError,
)
from app.pagination import normalize_page, page_flags
from app.repositories.comments import CommentRepository
from app.schemas import CommentCreate, CommentResponse, CommentTree
from app.tree import build_tree
from app.tree_cache import CommentTreeCache

MAX_CONTENT_LENGTH = 1000
MAX_AUTHOR_LENGTH = 50


def validate_comment(data: CommentCreate) -> None:
    if data.post_id <= 0:
        raise InvalidPostID()
    if not data.content:
        raise ContentRequired()
    if len(data.content) > MAX_CONTENT_LENGTH:
        raise ContentTooLong()
    if not data.author:
        raise AuthorRequired()
    if len(data.author) > MAX_AUTHOR_LENGTH:
        raise AuthorTooLong()


class CommentService:
    def __init__(
        self,
        repository: CommentRepository,
        cache: CommentTreeCache,
        logger: logging.Logger | None = None,
    ) -> None:
        self._repo = repository
        self._cache = cache
        self._log = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_comment(self, data: CommentCreate) -> CommentResponse:
        """
        Validate and store a comment, then drop the cache entries it makes
        stale.  Raises ``InvalidParentID`` (without touching the store) when
        the parent does not exist in the same post.
        """
        validate_comment(data)
        if not await self._repo.post_exists(data.post_id):
            raise PostNotFound()

        stale_roots: list[int] | None = []
        if data.parent_id is not None:
            if not await self._repo.exists(data.parent_id, post_id=data.post_id):
                raise InvalidParentID()
            stale_roots = await self._ancestors(data.parent_id)

        created = await self._repo.create(data)
        await self._invalidate(data.post_id, stale_roots)
        return created

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_comments(
        self,
        post_id: int,
        parent_id: int | None = None,
        page: int = 1,
        page_size: int = 10,
        search: str = "",
        sort_field: str = "created_at",
        sort_dir: str = "desc",
    ) -> CommentTree:
        """
        With *parent_id*: a single-element envelope holding that comment with
        its full descendant tree.  Without: one page of top-level comments,
        each with its full tree unless *search* is set.
        """
        if post_id <= 0:
            raise InvalidPostID()
        if parent_id is not None:
            return await self._get_thread(post_id, parent_id)

        page, page_size = normalize_page(page, page_size)
        try:
            comments, total = await self._cache.get_page(
                post_id, None, page, page_size, search, sort_field, sort_dir
            )
        except CacheMiss:
            self._log.debug("Comment page cache miss post_id=%d page=%d", post_id, page)
        except CacheError as exc:
            self._log.warning("Comment page cache read failed, using the database: %s", exc)
        else:
            return CommentTree(
                comments=comments, total=total, page=page, page_size=page_size,
                **page_flags(page, page_size, total),
            )

        comments, total = await self._repo.get_page(
            post_id, None, page, page_size, search, sort_field, sort_dir
        )
        if not search:
            comments = await self._attach_subtrees(post_id, comments)

        try:
            await self._cache.set_page(
                post_id, None, page, page_size, search, sort_field, sort_dir, comments, total
            )
        except CacheError as exc:
            self._log.warning("Failed to cache comment page post_id=%d: %s", post_id, exc)

        return CommentTree(
            comments=comments, total=total, page=page, page_size=page_size,
            **page_flags(page, page_size, total),
        )

    async def _get_thread(self, post_id: int, parent_id: int) -> CommentTree:
        parent = await self._repo.get_by_id(parent_id)
        if parent.post_id != post_id:
            raise CommentNotFound()
        children = await self._load_subtree(post_id, parent_id)
        thread = parent.model_copy(update={"children": children})
        return CommentTree(
            comments=[thread], total=1, page=1, page_size=1, has_next=False, has_prev=False
        )

    async def _load_subtree(self, post_id: int, root_id: int) -> list[CommentResponse]:
        """Children of *root_id*, nested; cache first, recursive query on miss."""
        try:
            return await self._cache.get_subtree(post_id, root_id)
        except CacheMiss:
            self._log.debug("Subtree cache miss root_id=%d", root_id)
        except CacheError as exc:
            self._log.warning("Subtree cache read failed root_id=%d: %s", root_id, exc)

        roots = build_tree(await self._repo.get_tree(post_id, root_id), root_id)
        children = roots[0].children if roots else []
        await self._store_subtree(post_id, root_id, children)
        return children

    async def _attach_subtrees(
        self, post_id: int, comments: list[CommentResponse]
    ) -> list[CommentResponse]:
        subtrees: dict[int, list[CommentResponse]] = {}
        missing: list[int] = []
        for comment in comments:
            try:
                subtrees[comment.id] = await self._cache.get_subtree(post_id, comment.id)
            except CacheMiss:
                missing.append(comment.id)
            except CacheError as exc:
                self._log.warning("Subtree cache read failed root_id=%d: %s", comment.id, exc)
                missing.append(comment.id)

        if missing:
            for root in build_tree(await self._repo.get_forest(post_id, missing)):
                subtrees[root.id] = root.children
                await self._store_subtree(post_id, root.id, root.children)

        return [c.model_copy(update={"children": subtrees.get(c.id, [])}) for c in comments]

    async def _store_subtree(
        self, post_id: int, root_id: int, children: list[CommentResponse]
    ) -> None:
        try:
            await self._cache.set_subtree(post_id, root_id, children)
        except CacheError as exc:
            self._log.warning("Failed to cache subtree root_id=%d: %s", root_id, exc)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_comment(self, comment_id: int) -> None:
        """
        Delete a comment and all of its replies, then drop every cached
        subtree rooted at a deleted comment or at one of its ancestors.
        """
        if comment_id <= 0:
            raise InvalidCommentID()
        if not await self._repo.exists(comment_id):
            raise CommentNotFound()

        comment = await self._repo.get_by_id(comment_id)
        stale_roots: list[int] | None = [comment_id]
        if comment.parent_id is not None:
            ancestors = await self._ancestors(comment.parent_id)
            stale_roots = None if ancestors is None else stale_roots + ancestors

        deleted = await self._repo.delete(comment_id)
        if stale_roots is not None:
            stale_roots = sorted(set(stale_roots) | set(deleted))
        await self._invalidate(comment.post_id, stale_roots)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    async def _ancestors(self, comment_id: int) -> list[int] | None:
        """Ancestor chain of *comment_id* (inclusive), or None when unknown."""
        try:
            return await self._repo.get_ancestor_ids(comment_id)
        except TransientInfraError as exc:
            self._log.warning(
                "Ancestor lookup failed for comment_id=%d, dropping all subtrees: %s",
                comment_id, exc.__cause__,
            )
            return None

    async def _invalidate(self, post_id: int, stale_roots: list[int] | None) -> None:
        """
        Best-effort invalidation after a write to *post_id*.

        *stale_roots* lists the subtree keys to drop; None drops every
        subtree of the post.  Each step runs even if an earlier one failed.
        """
        if stale_roots is None:
            steps = [("subtrees", self._cache.invalidate_all_subtrees(post_id))]
        else:
            steps = [("subtrees", self._cache.invalidate_subtrees(post_id, *stale_roots))]
        steps.append(("pages", self._cache.invalidate_pages(post_id)))
        steps.append(("post summary", self._cache.invalidate_post_summary(post_id)))

        for name, step in steps:
            try:
                await step
            except CacheError as exc:
                self._log.warning(
                    "Failed to invalidate %s cache for post_id=%d: %s", name, post_id, exc
                )
