"""
API endpoints for email delivery and the email queue
"""
from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, EmailStr

from marketplace.core.exceptions import ApiError
from marketplace.domain.notification import EmailMessage, QueueEmailRequest
from marketplace.services.email_service import EmailService

router = APIRouter()


class WelcomeEmailRequest(BaseModel):
    email: EmailStr
    first_name: str = ""


class PasswordResetRequest(BaseModel):
    email: EmailStr
    token: str


@router.post("/send")
async def send_email(message: EmailMessage):
    """Send immediately over SMTP"""
    try:
        return {"status": "success", "data": EmailService.send_email(message)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error sending email: {str(e)}")


@router.post("/queue", status_code=202)
async def queue_email(data: QueueEmailRequest):
    """Queue for the background sender; priority below 5 goes first"""
    try:
        message = EmailMessage(**data.model_dump(exclude={"priority", "scheduled_for"}))
        email_id = EmailService.queue_email(message, priority=data.priority, scheduled_for=data.scheduled_for)
        return {"status": "success", "data": {"id": email_id}}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error queueing email: {str(e)}")


@router.get("/queue")
async def get_queue_length():
    try:
        return {"status": "success", "data": EmailService.get_email_queue_length()}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error reading email queue: {str(e)}")


@router.post("/queue/process")
async def process_queue(limit: int = Query(50, ge=1, le=500)):
    try:
        return {"status": "success", "data": EmailService.process_email_queue(limit)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error processing email queue: {str(e)}")


@router.delete("/queue")
async def clear_queue():
    try:
        EmailService.clear_email_queue()
        return {"status": "success", "message": "Email queue cleared"}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error clearing email queue: {str(e)}")


@router.post("/welcome", status_code=202)
async def send_welcome_email(data: WelcomeEmailRequest):
    try:
        email_id = EmailService.send_welcome_email({"email": data.email, "first_name": data.first_name})
        return {"status": "success", "data": {"id": email_id}}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error sending welcome email: {str(e)}")


@router.post("/password-reset", status_code=202)
async def send_password_reset(data: PasswordResetRequest):
    try:
        email_id = EmailService.send_password_reset(data.email, data.token)
        return {"status": "success", "data": {"id": email_id}}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error sending password reset email: {str(e)}")
