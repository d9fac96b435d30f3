from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# --- Comment ---

class CommentCreate(BaseModel):
    post_id: int
    parent_id: int | None = None
    content: str = Field(min_length=1, max_length=1000)
    author: str = Field(min_length=2, max_length=50)


class CommentResponse(BaseModel):
    id: int
    post_id: int
    parent_id: int | None = None
    content: str
    author: str
    created_at: datetime
    updated_at: datetime
    # Populated during tree assembly only; never persisted.
    children: list[CommentResponse] = []
    model_config = ConfigDict(from_attributes=True)


class CommentTree(BaseModel):
    comments: list[CommentResponse]
    total: int
    page: int
    page_size: int
    has_next: bool
    has_prev: bool


# --- Post ---

class PostCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1, max_length=10000)
    author: str = Field(min_length=2, max_length=50)


class PostResponse(BaseModel):
    id: int
    title: str
    content: str
    author: str
    created_at: datetime
    updated_at: datetime
    comments_count: int = 0
    model_config = ConfigDict(from_attributes=True)


class PostList(BaseModel):
    posts: list[PostResponse]
    total: int
    page: int
    page_size: int
    has_next: bool
    has_prev: bool


# --- Metrics ---

class MetricsResponse(BaseModel):
    total_posts: int
    total_comments: int
    avg_comments_per_post: float
    cache_info: dict = {}


# Required for the self-reference in CommentResponse.children
CommentResponse.model_rebuild()
