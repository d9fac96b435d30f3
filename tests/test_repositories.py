"""
Store adapter tests: recursive CTE reads, cascading deletes and paginated
listings against the in-memory SQLite database.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import CommentNotFound, PostNotFound
from app.models import Comment, Post
from app.repositories.comments import CommentRepository
from app.repositories.posts import PostRepository
from app.retry import RetryPolicy
from app.schemas import CommentCreate, PostCreate

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
FAST = RetryPolicy(attempts=1, delay=0, timeout=None)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _post(db: AsyncSession, title: str = "Post", content: str = "Body", minutes: int = 0) -> Post:
    ts = T0 + timedelta(minutes=minutes)
    post = Post(title=title, content=content, author="writer", created_at=ts, updated_at=ts)
    db.add(post)
    await db.flush()
    return post


async def _comment(
    db: AsyncSession,
    post: Post,
    parent: Comment | None = None,
    content: str = "text",
    minutes: int = 0,
) -> Comment:
    ts = T0 + timedelta(minutes=minutes)
    comment = Comment(
        post_id=post.id,
        parent_id=parent.id if parent else None,
        content=content,
        author="reader",
        created_at=ts,
        updated_at=ts,
    )
    db.add(comment)
    await db.flush()
    return comment


async def _thread(db: AsyncSession):
    """
    post
    ├── a (t=1)
    │   ├── b (t=2)
    │   │   └── d (t=4)
    │   └── c (t=3)
    └── e (t=5)
    """
    post = await _post(db)
    a = await _comment(db, post, minutes=1)
    b = await _comment(db, post, a, minutes=2)
    c = await _comment(db, post, a, minutes=3)
    d = await _comment(db, post, b, minutes=4)
    e = await _comment(db, post, minutes=5)
    return post, a, b, c, d, e


async def _count(db: AsyncSession, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


# ---------------------------------------------------------------------------
# CommentRepository: point lookups and writes
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_returns_row_with_id(db_session: AsyncSession):
    post = await _post(db_session)
    repo = CommentRepository(db_session, FAST)

    created = await repo.create(CommentCreate(post_id=post.id, content="hello", author="alice"))

    assert created.id > 0
    assert created.post_id == post.id
    assert created.parent_id is None
    assert created.children == []


@pytest.mark.asyncio
async def test_exists_scoped_to_post(db_session: AsyncSession):
    post, a, *_ = await _thread(db_session)
    other = await _post(db_session, title="Other")
    repo = CommentRepository(db_session, FAST)

    assert await repo.exists(a.id)
    assert await repo.exists(a.id, post_id=post.id)
    assert not await repo.exists(a.id, post_id=other.id)
    assert not await repo.exists(999)
    assert await repo.post_exists(post.id)
    assert not await repo.post_exists(999)


@pytest.mark.asyncio
async def test_get_by_id_missing_raises(db_session: AsyncSession):
    repo = CommentRepository(db_session, FAST)
    with pytest.raises(CommentNotFound):
        await repo.get_by_id(12345)


# ---------------------------------------------------------------------------
# CommentRepository: recursive reads
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_tree_returns_root_and_all_descendants_oldest_first(db_session: AsyncSession):
    post, a, b, c, d, e = await _thread(db_session)
    repo = CommentRepository(db_session, FAST)

    rows = await repo.get_tree(post.id, a.id)

    assert [r.id for r in rows] == [a.id, b.id, c.id, d.id]


@pytest.mark.asyncio
async def test_get_tree_of_leaf_is_just_the_leaf(db_session: AsyncSession):
    post, *_, d, _e = await _thread(db_session)
    repo = CommentRepository(db_session, FAST)
    assert [r.id for r in await repo.get_tree(post.id, d.id)] == [d.id]


@pytest.mark.asyncio
async def test_get_tree_ignores_root_from_other_post(db_session: AsyncSession):
    _post_a, a, *_ = await _thread(db_session)
    other = await _post(db_session, title="Other")
    repo = CommentRepository(db_session, FAST)
    assert await repo.get_tree(other.id, a.id) == []


@pytest.mark.asyncio
async def test_get_forest_loads_several_subtrees_in_one_call(db_session: AsyncSession):
    post, a, b, c, d, e = await _thread(db_session)
    reply_to_e = await _comment(db_session, post, e, minutes=6)
    repo = CommentRepository(db_session, FAST)

    rows = await repo.get_forest(post.id, [a.id, e.id])

    assert {r.id for r in rows} == {a.id, b.id, c.id, d.id, e.id, reply_to_e.id}
    assert await repo.get_forest(post.id, []) == []


@pytest.mark.asyncio
async def test_get_ancestor_ids_walks_up_to_top_level(db_session: AsyncSession):
    post, a, b, c, d, e = await _thread(db_session)
    repo = CommentRepository(db_session, FAST)

    assert sorted(await repo.get_ancestor_ids(d.id)) == sorted([d.id, b.id, a.id])
    assert await repo.get_ancestor_ids(a.id) == [a.id]
    assert await repo.get_ancestor_ids(999) == []


@pytest.mark.asyncio
async def test_delete_removes_whole_subtree(db_session: AsyncSession):
    post, a, b, c, d, e = await _thread(db_session)
    repo = CommentRepository(db_session, FAST)

    deleted = await repo.delete(a.id)

    assert sorted(deleted) == sorted([a.id, b.id, c.id, d.id])
    for gone in (a, b, c, d):
        assert not await repo.exists(gone.id)
    assert await repo.exists(e.id)
    assert await _count(db_session, Comment) == 1


@pytest.mark.asyncio
async def test_delete_middle_node_keeps_siblings_and_ancestors(db_session: AsyncSession):
    post, a, b, c, d, e = await _thread(db_session)
    repo = CommentRepository(db_session, FAST)

    await repo.delete(b.id)

    assert not await repo.exists(b.id)
    assert not await repo.exists(d.id)
    assert [r.id for r in await repo.get_tree(post.id, a.id)] == [a.id, c.id]


# ---------------------------------------------------------------------------
# CommentRepository: pagination
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_page_top_level_only_with_total(db_session: AsyncSession):
    post, a, b, c, d, e = await _thread(db_session)
    repo = CommentRepository(db_session, FAST)

    rows, total = await repo.get_page(post.id, None, page=1, page_size=10)

    assert total == 2
    assert [r.id for r in rows] == [e.id, a.id]  # newest first by default


@pytest.mark.asyncio
async def test_get_page_children_of_parent(db_session: AsyncSession):
    post, a, b, c, d, e = await _thread(db_session)
    repo = CommentRepository(db_session, FAST)

    rows, total = await repo.get_page(post.id, a.id, 1, 10, sort_dir="asc")

    assert total == 2
    assert [r.id for r in rows] == [b.id, c.id]


@pytest.mark.asyncio
async def test_get_page_offset_and_limit(db_session: AsyncSession):
    post = await _post(db_session)
    comments = [await _comment(db_session, post, minutes=i) for i in range(5)]
    repo = CommentRepository(db_session, FAST)

    rows, total = await repo.get_page(post.id, None, page=2, page_size=2, sort_dir="asc")

    assert total == 5
    assert [r.id for r in rows] == [comments[2].id, comments[3].id]


@pytest.mark.asyncio
async def test_get_page_search_is_case_insensitive_and_literal(db_session: AsyncSession):
    post = await _post(db_session)
    hit = await _comment(db_session, post, content="Loving ASYNC code")
    await _comment(db_session, post, content="nothing to see", minutes=1)
    percent = await _comment(db_session, post, content="100% sure", minutes=2)
    repo = CommentRepository(db_session, FAST)

    rows, total = await repo.get_page(post.id, None, 1, 10, search="async")
    assert total == 1
    assert rows[0].id == hit.id

    rows, total = await repo.get_page(post.id, None, 1, 10, search="%")
    assert [r.id for r in rows] == [percent.id]


@pytest.mark.asyncio
async def test_get_page_unknown_sort_field_falls_back_to_created_at(db_session: AsyncSession):
    post = await _post(db_session)
    older = await _comment(db_session, post, minutes=1)
    newer = await _comment(db_session, post, minutes=2)
    repo = CommentRepository(db_session, FAST)

    rows, _ = await repo.get_page(post.id, None, 1, 10, sort_field="author; DROP TABLE", sort_dir="desc")

    assert [r.id for r in rows] == [newer.id, older.id]


# ---------------------------------------------------------------------------
# PostRepository
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_post_create_and_get(db_session: AsyncSession):
    repo = PostRepository(db_session, FAST)
    created = await repo.create(PostCreate(title="Hello", content="World", author="alice"))

    fetched = await repo.get_by_id(created.id)

    assert fetched.title == "Hello"
    assert fetched.comments_count == 0
    assert await repo.exists(created.id)


@pytest.mark.asyncio
async def test_post_get_missing_raises(db_session: AsyncSession):
    with pytest.raises(PostNotFound):
        await PostRepository(db_session, FAST).get_by_id(404)


@pytest.mark.asyncio
async def test_post_page_search_matches_title_or_content(db_session: AsyncSession):
    by_title = await _post(db_session, title="Redis tips", content="body")
    by_content = await _post(db_session, title="Other", content="all about redis", minutes=1)
    await _post(db_session, title="Unrelated", content="nope", minutes=2)
    repo = PostRepository(db_session, FAST)

    rows, total = await repo.get_page(1, 10, search="REDIS", sort_field="id", sort_dir="asc")

    assert total == 2
    assert [r.id for r in rows] == [by_title.id, by_content.id]


@pytest.mark.asyncio
async def test_count_comments_by_post_defaults_to_zero(db_session: AsyncSession):
    busy = await _post(db_session)
    quiet = await _post(db_session, title="Quiet")
    root = await _comment(db_session, busy)
    await _comment(db_session, busy, root, minutes=1)
    repo = PostRepository(db_session, FAST)

    assert await repo.count_comments_by_post([busy.id, quiet.id]) == {busy.id: 2, quiet.id: 0}
    assert await repo.count_comments_by_post([]) == {}
    assert await repo.count_comments(busy.id) == 2


@pytest.mark.asyncio
async def test_post_delete_cascades_to_comments(db_session: AsyncSession):
    post, *_ = await _thread(db_session)
    survivor_post = await _post(db_session, title="Survivor")
    survivor = await _comment(db_session, survivor_post)
    repo = PostRepository(db_session, FAST)

    await repo.delete(post.id)

    assert not await repo.exists(post.id)
    assert await _count(db_session, Comment) == 1
    assert await CommentRepository(db_session, FAST).exists(survivor.id)


@pytest.mark.asyncio
async def test_writes_are_committed_before_returning(file_db):
    async with file_db() as writer_db, file_db() as reader_db:
        post = await PostRepository(writer_db, FAST).create(
            PostCreate(title="Hello", content="World", author="alice")
        )
        comment = await CommentRepository(writer_db, FAST).create(
            CommentCreate(post_id=post.id, content="hello", author="bob")
        )
        readers = CommentRepository(reader_db, FAST)
        assert await readers.exists(comment.id, post_id=post.id)

        await CommentRepository(writer_db, FAST).delete(comment.id)
        assert not await readers.exists(comment.id)


def test_models_load_threads_only_through_queries():
    assert not inspect(Post).relationships
    assert not inspect(Comment).relationships
