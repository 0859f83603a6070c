from __future__ import annotations


def page_meta(total: int, page: int, limit: int) -> dict:
    total_pages = (total + limit - 1) // limit if total > 0 else 0
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
    }


def paginate(query, page: int, limit: int) -> tuple[list, dict]:
    """
    Run a count + offset/limit over an ordered query.

    Returns (rows, meta) where meta is {total, page, limit, total_pages}.
    """
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, page_meta(total, page, limit)
