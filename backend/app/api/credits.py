"""Credits API routes - balance and usage reporting"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.security import require_auth
from app.db.session import get_db
from app.services.balance_service import get_balance_summary
from app.services.token_service import (
    get_daily_token_usage_for_user, get_session_token_usage_for_user,
    get_token_usage_totals_for_user, list_token_usage_for_user
)

router = APIRouter(prefix="/api/credits", tags=["credits"])


@router.get("/balance")
def get_balance(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Get current credit balance"""
    return get_balance_summary(db, user_id).to_dict()


@router.get("/usage/daily")
def get_daily_usage(
    days: int = Query(30, ge=1, le=365),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    return {"days": get_daily_token_usage_for_user(db, user_id, days)}


@router.get("/usage/sessions")
def get_session_usage(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    return {"sessions": get_session_token_usage_for_user(db, user_id)}


@router.get("/usage/totals")
def get_usage_totals(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    return get_token_usage_totals_for_user(db, user_id)


@router.get("/history")
def get_history(
    limit: int = Query(50, ge=1, le=500),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Get usage history, newest first"""
    return {"entries": list_token_usage_for_user(db, user_id, limit)}
