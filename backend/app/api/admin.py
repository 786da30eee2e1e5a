"""Admin API routes"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.security import require_admin
from app.db.session import get_db
from app.models.user import User
from app.schemas.admin import (
    GrantCreditsRequest, PricingPlanCreate, PricingPlanUpdate,
    ModelConfigCreate, ModelConfigUpdate, FreeMessageSettingsUpdate
)
from app.services.admin_service import (
    grant_credits, list_users_with_balances, get_user_details_with_balance,
    create_model_config, update_model_config, model_config_to_dict
)
from app.services.balance_service import get_balance_summary
from app.services.plan_service import (
    list_pricing_plans, create_pricing_plan, update_pricing_plan, delete_pricing_plan, plan_to_dict
)
from app.services.settings_service import load_free_message_policy, save_free_message_policy
from app.services.subscription_service import list_active_subscription_summaries

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    search: Optional[str] = None,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """List users with their balances"""
    return list_users_with_balances(db, page=page, limit=limit, search=search)


@router.get("/users/{user_id}")
def get_user(user_id: int, admin_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    return get_user_details_with_balance(db, user_id).unwrap()


@router.post("/users/{user_id}/grant-credits")
def grant_user_credits(
    user_id: int,
    request_data: GrantCreditsRequest,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Grant tokens to a user outside the payment flow"""
    grant_credits(db, user_id, request_data.tokens, request_data.expires_in_days).unwrap()
    logger.info(f"Admin {admin_user.id} granted {request_data.tokens} tokens to user {user_id}")
    return {"user_id": user_id, "balance": get_balance_summary(db, user_id).to_dict()}


@router.get("/subscriptions/active")
def list_active_subscriptions(
    limit: int = Query(20, ge=1, le=200),
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return {"subscriptions": list_active_subscription_summaries(db, limit=limit)}


@router.get("/plans")
def list_plans(
    include_inactive: bool = True,
    include_deleted: bool = False,
    only_deleted: bool = False,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    plans = list_pricing_plans(
        db,
        include_inactive=include_inactive,
        include_deleted=include_deleted,
        only_deleted=only_deleted
    )
    return {"plans": [plan_to_dict(plan) for plan in plans]}


@router.post("/plans", status_code=201)
def create_plan(request_data: PricingPlanCreate, admin_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    plan = create_pricing_plan(db, **request_data.model_dump()).unwrap()
    return {"plan": plan_to_dict(plan)}


@router.patch("/plans/{plan_id}")
def update_plan(
    plan_id: int,
    request_data: PricingPlanUpdate,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    plan = update_pricing_plan(db, plan_id, request_data.model_dump(exclude_unset=True)).unwrap()
    return {"plan": plan_to_dict(plan)}


@router.delete("/plans/{plan_id}")
def delete_plan(plan_id: int, admin_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    plan = delete_pricing_plan(db, plan_id).unwrap()
    return {"plan": plan_to_dict(plan)}


@router.post("/model-configs", status_code=201)
def create_model(request_data: ModelConfigCreate, admin_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    model_config = create_model_config(db, **request_data.model_dump()).unwrap()
    return {"model_config": model_config_to_dict(model_config)}


@router.patch("/model-configs/{model_config_id}")
def update_model(
    model_config_id: int,
    request_data: ModelConfigUpdate,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Update billing attributes; send null rates to fall back to the baseline"""
    model_config = update_model_config(db, model_config_id, request_data.model_dump(exclude_unset=True)).unwrap()
    return {"model_config": model_config_to_dict(model_config)}


@router.get("/settings/free-messages")
def get_free_message_settings(admin_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    return load_free_message_policy(db).to_dict()


@router.put("/settings/free-messages")
def put_free_message_settings(
    request_data: FreeMessageSettingsUpdate,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    policy = save_free_message_policy(db, request_data.model_dump()).unwrap()
    return policy.to_dict()
