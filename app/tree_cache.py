"""
Comment tree cache.

Two independent key families live under a per-post prefix so a post's
entries can be dropped with one SCAN pattern:

- subtree  ``comments:{post_id}:tree:{root_id}``
  the root's materialised ``children`` (nested), as a JSON list;
- page     ``comments:{post_id}:page:{scope}:{page}:{page_size}:{sort_field}:{sort_dir}:{search}``
  ``{"comments": [...], "total": n}`` for one listing request, where
  *scope* is the parent id or ``root``.

Both families are pure optimisations over the store.  Pages embed the
subtrees of their top-level comments, so any write to a post wipes that
post's whole page namespace rather than tracking which pages contain the
changed branch.
"""
import pydantic

from app.cache import CacheError, CacheManager
from app.config import settings
from app.schemas import CommentResponse

_ROOT_SCOPE = "root"

_comment_list = pydantic.TypeAdapter(list[CommentResponse])


def subtree_key(post_id: int, root_id: int) -> str:
    return f"comments:{post_id}:tree:{root_id}"


def page_key(
    post_id: int,
    parent_id: int | None,
    page: int,
    page_size: int,
    search: str,
    sort_field: str,
    sort_dir: str,
) -> str:
    scope = _ROOT_SCOPE if parent_id is None else parent_id
    # search goes last: it is free text and must not disturb the prefix.
    return f"comments:{post_id}:page:{scope}:{page}:{page_size}:{sort_field}:{sort_dir}:{search}"


def _dump(comments: list[CommentResponse]) -> list:
    return _comment_list.dump_python(comments, mode="json")


def _load(payload, key: str) -> list[CommentResponse]:
    try:
        return _comment_list.validate_python(payload)
    except pydantic.ValidationError as exc:
        raise CacheError(f"stale payload shape under {key!r}") from exc


class CommentTreeCache:
    def __init__(
        self,
        manager: CacheManager,
        tree_ttl: int | None = None,
        page_ttl: int | None = None,
    ) -> None:
        self.manager = manager
        self._tree_ttl = tree_ttl if tree_ttl is not None else settings.CACHE_TTL_TREE
        self._page_ttl = page_ttl if page_ttl is not None else settings.CACHE_TTL_PAGE

    # ------------------------------------------------------------------
    # Subtrees
    # ------------------------------------------------------------------

    async def get_subtree(self, post_id: int, root_id: int) -> list[CommentResponse]:
        """Cached children of *root_id*; raises ``CacheMiss`` / ``CacheError``."""
        key = subtree_key(post_id, root_id)
        return _load(await self.manager.get(key), key)

    async def set_subtree(
        self, post_id: int, root_id: int, children: list[CommentResponse]
    ) -> None:
        await self.manager.set(subtree_key(post_id, root_id), _dump(children), ttl=self._tree_ttl)

    async def invalidate_subtrees(self, post_id: int, *root_ids: int) -> None:
        await self.manager.delete(*(subtree_key(post_id, root_id) for root_id in root_ids))

    async def invalidate_all_subtrees(self, post_id: int) -> None:
        await self.manager.delete_pattern(f"comments:{post_id}:tree:*")

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    async def get_page(
        self,
        post_id: int,
        parent_id: int | None,
        page: int,
        page_size: int,
        search: str,
        sort_field: str,
        sort_dir: str,
    ) -> tuple[list[CommentResponse], int]:
        key = page_key(post_id, parent_id, page, page_size, search, sort_field, sort_dir)
        payload = await self.manager.get(key)
        try:
            return _load(payload["comments"], key), int(payload["total"])
        except (KeyError, TypeError, ValueError) as exc:
            raise CacheError(f"stale payload shape under {key!r}") from exc

    async def set_page(
        self,
        post_id: int,
        parent_id: int | None,
        page: int,
        page_size: int,
        search: str,
        sort_field: str,
        sort_dir: str,
        comments: list[CommentResponse],
        total: int,
    ) -> None:
        key = page_key(post_id, parent_id, page, page_size, search, sort_field, sort_dir)
        await self.manager.set(key, {"comments": _dump(comments), "total": total}, ttl=self._page_ttl)

    async def invalidate_pages(self, post_id: int) -> None:
        await self.manager.delete_pattern(f"comments:{post_id}:page:*")

    # ------------------------------------------------------------------
    # Whole post
    # ------------------------------------------------------------------

    async def invalidate_post_summary(self, post_id: int) -> None:
        """Drop the cached post entries whose ``comments_count`` just changed."""
        await self.manager.invalidate_post(post_id)

    async def invalidate_post(self, post_id: int) -> None:
        """Drop every comment key of *post_id* plus its cached post entries."""
        await self.manager.delete_pattern(f"comments:{post_id}:*")
        await self.manager.invalidate_post(post_id)
