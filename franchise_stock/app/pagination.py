import math

MAX_PER_PAGE = 100


def page_window(page: int, per_page: int) -> tuple[int, int]:
    """Clamp page/per_page and return (limit, offset)."""
    per_page = max(1, min(int(per_page or 10), MAX_PER_PAGE))
    page = max(1, int(page or 1))
    return per_page, (page - 1) * per_page


def page_result(rows: list, total: int, page: int, per_page: int) -> dict:
    limit, _ = page_window(page, per_page)
    return {
        "data": rows,
        "page": max(1, int(page or 1)),
        "per_page": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if total else 0,
    }
