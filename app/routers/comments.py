from fastapi import APIRouter, Depends, Query

from app.dependencies import PaginationParams, get_comment_service
from app.schemas import CommentCreate, CommentResponse, CommentTree
from app.services.comment_service import CommentService

router = APIRouter(prefix="/api/v1/comments", tags=["comments"])

@router.post("", status_code=201, response_model=CommentResponse)
async def create_comment(data: CommentCreate, service: CommentService = Depends(get_comment_service)):
    return await service.create_comment(data)

@router.get("", response_model=CommentTree)
async def get_comments(
    post_id: int = Query(..., description="Post whose comments are listed."),
    parent: int | None = Query(None, description="Return this comment with its full reply tree."),
    pagination: PaginationParams = Depends(),
    service: CommentService = Depends(get_comment_service),
):
    return await service.get_comments(
        post_id,
        parent,
        pagination.page,
        pagination.page_size,
        pagination.search,
        pagination.sort_by,
        pagination.sort_order,
    )

@router.delete("/{comment_id}", status_code=204)
async def delete_comment(comment_id: int, service: CommentService = Depends(get_comment_service)):
    await service.delete_comment(comment_id)
