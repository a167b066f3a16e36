from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Query


def paginate(query: Query, page: int = 1, limit: int = 10, serialize: Optional[Callable[[Any], Any]] = None) -> Dict[str, Any]:
    # Limit between 1 and 100
    page = max(1, page)
    limit = max(1, min(100, limit))
    offset = (page - 1) * limit

    total = query.count()
    rows = query.offset(offset).limit(limit).all()
    items = [serialize(r) for r in rows] if serialize else rows

    total_pages = (total + limit - 1) // limit if total > 0 else 1
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
    }
