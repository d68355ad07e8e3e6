"""
API endpoints for in-app and loyalty notifications
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from marketplace.api.deps import get_user_id
from marketplace.core.exceptions import ApiError
from marketplace.domain.notification import NotificationCreate, LoyaltyNotificationRequest
from marketplace.services.notification_service import NotificationService

router = APIRouter()


class OrderNotificationRequest(BaseModel):
    status: str
    tracking_number: Optional[str] = None


class BatchLoyaltyNotifications(BaseModel):
    notifications: List[LoyaltyNotificationRequest]


@router.get("")
async def get_my_notifications(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                               unread_only: bool = Query(False), user_id: str = Depends(get_user_id)):
    try:
        result = NotificationService.get_user_notifications(user_id, page=page, limit=limit,
                                                            unread_only=unread_only)
        return {"status": "success", "data": result}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting notifications: {str(e)}")


@router.get("/unread-count")
async def get_unread_count(user_id: str = Depends(get_user_id)):
    try:
        count = NotificationService.get_unread_notification_count(user_id)
        return {"status": "success", "data": {"unread_count": count}}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error counting notifications: {str(e)}")


@router.post("", status_code=201)
async def create_notification(data: NotificationCreate):
    try:
        return {"status": "success", "data": NotificationService.create_in_app_notification(data)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error creating notification: {str(e)}")


@router.post("/read-all")
async def mark_all_as_read(user_id: str = Depends(get_user_id)):
    try:
        updated = NotificationService.mark_all_notifications_as_read(user_id)
        return {"status": "success", "data": {"updated": updated}}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating notifications: {str(e)}")


@router.post("/loyalty")
async def send_loyalty_notification(data: LoyaltyNotificationRequest):
    """Email a loyalty event to a user; sent is False when delivery failed"""
    try:
        sent = NotificationService.send_loyalty_notification(data.user_id, data.type, data.data)
        return {"status": "success", "data": {"sent": sent}}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error sending notification: {str(e)}")


@router.post("/loyalty/batch")
async def send_batch_loyalty_notifications(data: BatchLoyaltyNotifications):
    try:
        items: List[Dict[str, Any]] = [n.model_dump() for n in data.notifications]
        return {"status": "success", "data": NotificationService.send_batch_loyalty_notifications(items)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error sending notifications: {str(e)}")


@router.post("/orders/{order_id}")
async def send_order_notification(order_id: str, data: OrderNotificationRequest):
    try:
        sent = NotificationService.send_order_notification(order_id, data.status, data.tracking_number)
        return {"status": "success", "data": {"sent": sent}}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error sending order notification: {str(e)}")


@router.post("/{notification_id}/read")
async def mark_as_read(notification_id: str, user_id: str = Depends(get_user_id)):
    try:
        return {"status": "success", "data": NotificationService.mark_notification_as_read(notification_id, user_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating notification: {str(e)}")


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str, user_id: str = Depends(get_user_id)):
    try:
        NotificationService.delete_notification(notification_id, user_id)
        return {"status": "success", "message": "Notification deleted"}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error deleting notification: {str(e)}")
