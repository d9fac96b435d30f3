"""
Nested comment trees from flat query results.

Rows arrive flat from a recursive query.  ``build_tree`` indexes them by id
first and only then links each row to a parent found in that index, so a
tree is assembled without a query per node and a link can never point
outside the loaded set.
"""
from collections.abc import Iterable

from app.schemas import CommentResponse


def _sibling_order(comment: CommentResponse):
    return (comment.created_at, comment.id)


def build_tree(
    comments: Iterable[CommentResponse], root_id: int | None = None
) -> list[CommentResponse]:
    """
    Return the roots of *comments* with ``children`` populated.

    With *root_id* the single node carrying that id is returned (an empty
    list when it is not in the set).  Without it every comment whose
    ``parent_id`` is None is a root, kept in input order.  Siblings are
    ordered by ``created_at`` ascending.  Rows whose parent is missing from
    the set are left out of the forest; the builder never raises.

    The input models are not mutated.
    """
    nodes: dict[int, CommentResponse] = {}
    order: list[CommentResponse] = []
    for comment in comments:
        node = comment.model_copy(update={"children": []})
        nodes[node.id] = node
        order.append(node)

    for node in order:
        if node.parent_id is None:
            continue
        parent = nodes.get(node.parent_id)
        if parent is not None:
            parent.children.append(node)

    for node in order:
        if len(node.children) > 1:
            node.children.sort(key=_sibling_order)

    if root_id is not None:
        root = nodes.get(root_id)
        return [root] if root is not None else []
    return [node for node in order if node.parent_id is None]
