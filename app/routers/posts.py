from fastapi import APIRouter, Depends

from app.dependencies import PaginationParams, get_post_service
from app.schemas import PostCreate, PostList, PostResponse
from app.services.post_service import PostService

router = APIRouter(prefix="/api/v1/posts", tags=["posts"])

@router.get("", response_model=PostList)
async def list_posts(
    pagination: PaginationParams = Depends(),
    service: PostService = Depends(get_post_service),
):
    return await service.get_posts(
        pagination.page, pagination.page_size, pagination.search, pagination.sort_by, pagination.sort_order
    )

@router.get("/{post_id}", response_model=PostResponse)
async def get_post(post_id: int, service: PostService = Depends(get_post_service)):
    return await service.get_post(post_id)

@router.post("", status_code=201, response_model=PostResponse)
async def create_post(data: PostCreate, service: PostService = Depends(get_post_service)):
    return await service.create_post(data)

@router.delete("/{post_id}", status_code=204)
async def delete_post(post_id: int, service: PostService = Depends(get_post_service)):
    await service.delete_post(post_id)
