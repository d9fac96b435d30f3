from app.config import settings


def normalize_page(page: int, page_size: int) -> tuple[int, int]:
    """
    Clamp raw pagination input instead of rejecting it.

    Non-positive pages become 1, non-positive page sizes fall back to
    ``settings.DEFAULT_PAGE_SIZE`` and anything above
    ``settings.MAX_PAGE_SIZE`` is capped.
    """
    if page < 1:
        page = 1
    if page_size < 1:
        page_size = settings.DEFAULT_PAGE_SIZE
    return page, min(page_size, settings.MAX_PAGE_SIZE)


def page_flags(page: int, page_size: int, total: int) -> dict:
    return {
        "has_next": page * page_size < total,
        "has_prev": page > 1,
    }
