"""Response envelope shared by every route: ``{success, message, data, errors}``."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success(
    data: Optional[Any] = None,
    message: str = "Success",
    meta: Optional[Dict] = None,
) -> dict:
    response = {
        "success": True,
        "message": message,
        "data": data,
        "errors": None,
    }
    if meta is not None:
        response["meta"] = meta

    # Pydantic models, Decimals and datetimes become plain JSON values
    return jsonable_encoder(response)


def error_response(status_code: int, message: str, errors: Optional[List[Any]] = None) -> JSONResponse:
    """Failure envelope; ``errors`` carries the typed ``{"code": ...}`` entries."""
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            {
                "success": False,
                "message": message,
                "data": None,
                "errors": errors or [],
                "timestamp": f"{datetime.utcnow().isoformat()}Z",
            }
        ),
    )


def paginated_response(
    items: List[Any],
    total: int,
    page: int,
    limit: int,
    message: str = "Success",
) -> dict:
    total_pages = (total + limit - 1) // limit
    return success(
        data=items,
        message=message,
        meta={
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": total_pages,
            "has_next": page < total_pages,
        },
    )
