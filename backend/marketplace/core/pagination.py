"""
Page/limit helpers shared by list endpoints
"""
import math
from typing import Dict


def page_offset(page: int, limit: int) -> int:
    return (max(page, 1) - 1) * limit


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }
