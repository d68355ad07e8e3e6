"""
API endpoints for order, product and user exports
"""
import io
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from marketplace.api.deps import get_request_id
from marketplace.core.exceptions import ApiError
from marketplace.services.export_service import ExportService, MEDIA_TYPES, parse_format

router = APIRouter()


def _download(content: bytes, name: str, fmt: str) -> StreamingResponse:
    export_format = parse_format(fmt)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filename = f"{name}_{timestamp}.{export_format.value}"
    return StreamingResponse(
        io.BytesIO(content),
        media_type=MEDIA_TYPES[export_format],
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/orders")
async def export_orders(format: str = Query("csv", description="csv, xlsx, pdf or json"),
                        vendor_id: Optional[str] = Query(None),
                        request_id: str = Depends(get_request_id)):
    try:
        content = ExportService.export_orders(format, vendor_id, request_id=request_id)
        return _download(content, "orders", format)
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error exporting orders: {str(e)}")


@router.get("/products")
async def export_products(format: str = Query("csv", description="csv, xlsx, pdf or json"),
                          vendor_id: Optional[str] = Query(None),
                          request_id: str = Depends(get_request_id)):
    try:
        content = ExportService.export_products(format, vendor_id, request_id=request_id)
        return _download(content, "products", format)
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error exporting products: {str(e)}")


@router.get("/users")
async def export_users(format: str = Query("csv", description="csv, xlsx, pdf or json"),
                       request_id: str = Depends(get_request_id)):
    try:
        content = ExportService.export_users(format, request_id=request_id)
        return _download(content, "users", format)
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error exporting users: {str(e)}")
