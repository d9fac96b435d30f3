from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.background import detached
from app.cache import cache
from app.database import get_db
from app.models import Comment, Post
from app.schemas import MetricsResponse

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])


@router.get("", response_model=MetricsResponse)
async def get_metrics(db: AsyncSession = Depends(get_db)):
    # Both totals in one round trip.
    totals = select(
        select(func.count()).select_from(Post).scalar_subquery(),
        select(func.count()).select_from(Comment).scalar_subquery(),
    )
    total_posts, total_comments = (await db.execute(totals)).one()

    avg_comments = total_comments / total_posts if total_posts else 0

    return MetricsResponse(
        total_posts=total_posts,
        total_comments=total_comments,
        avg_comments_per_post=round(avg_comments, 2),
        cache_info={**cache.stats, "pending_writes": detached.pending},
    )
