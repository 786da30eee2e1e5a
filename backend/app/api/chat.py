"""Chat API routes - message admission and usage recording"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.security import require_user
from app.db.session import get_db
from app.models.user import User
from app.schemas.credits import AdmissionRequest, UsageRequest
from app.services.admission_service import can_send_message, record_user_message
from app.services.token_service import record_usage_for_message

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("/admission")
def admit_message(
    request_data: AdmissionRequest,
    user: User = Depends(require_user),
    db: Session = Depends(get_db)
):
    """Check whether the user may send a message; logs the message when admitted"""
    decision = can_send_message(db, user, request_data.model_config_id).unwrap()
    record_user_message(
        db, user.id, request_data.chat_id, request_data.model_config_id, billable=decision.billable
    )
    return {"allowed": decision.allowed, "billable": decision.billable, "reason": decision.reason}


@router.post("/usage")
def post_usage(
    request_data: UsageRequest,
    user: User = Depends(require_user),
    db: Session = Depends(get_db)
):
    """Record token usage for the latest admitted message in the chat

    Model and billing come from the admission, not from the request body.
    """
    usage = record_usage_for_message(
        db,
        user.id,
        request_data.chat_id,
        request_data.input_tokens,
        request_data.output_tokens
    ).unwrap()
    return {
        "id": usage.id,
        "total_tokens": usage.total_tokens,
        "tokens_deducted": usage.tokens_deducted,
        "subscription_id": usage.subscription_id
    }
