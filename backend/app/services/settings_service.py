"""Settings service - system-wide settings such as the free tier policy"""
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings, FREE_MESSAGE_SETTINGS_KEY
from app.core.errors import Ok, Result, storage_error, validation_error
from app.models.system_setting import SystemSetting

logger = logging.getLogger(__name__)

MODE_GLOBAL = "global"
MODE_PER_MODEL = "per-model"


@dataclass(frozen=True)
class GlobalFreeAllowance:
    """One daily free allowance shared across all models"""
    limit: int

    def to_dict(self) -> Dict[str, Any]:
        return {"mode": MODE_GLOBAL, "globalLimit": self.limit}


@dataclass(frozen=True)
class PerModelFreeAllowance:
    """Each model's own free_messages_per_day applies"""

    def to_dict(self) -> Dict[str, Any]:
        return {"mode": MODE_PER_MODEL, "globalLimit": settings.FREE_MESSAGES_PER_DAY}


FreeMessagePolicy = Union[GlobalFreeAllowance, PerModelFreeAllowance]


def _normalize_limit(value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return settings.FREE_MESSAGES_PER_DAY
    if not math.isfinite(number):
        return settings.FREE_MESSAGES_PER_DAY
    return max(0, round(number))


def parse_free_message_policy(raw: Optional[Dict[str, Any]]) -> FreeMessagePolicy:
    """Build the typed policy from stored JSON; anything unrecognized means per-model"""
    if not isinstance(raw, dict):
        return PerModelFreeAllowance()
    if raw.get("mode") == MODE_GLOBAL:
        return GlobalFreeAllowance(limit=_normalize_limit(raw.get("globalLimit")))
    return PerModelFreeAllowance()


def load_free_message_policy(db: Session) -> FreeMessagePolicy:
    try:
        row = db.query(SystemSetting).filter(SystemSetting.key == FREE_MESSAGE_SETTINGS_KEY).first()
    except SQLAlchemyError as e:
        logger.warning(f"Unable to load free message policy, using default: {e}")
        db.rollback()
        return PerModelFreeAllowance()

    if row is None:
        return PerModelFreeAllowance()

    try:
        raw = json.loads(row.value)
    except (TypeError, ValueError):
        logger.warning(f"Malformed {FREE_MESSAGE_SETTINGS_KEY} setting, using default")
        return PerModelFreeAllowance()
    return parse_free_message_policy(raw)


def save_free_message_policy(db: Session, raw: Dict[str, Any]) -> Result:
    """Normalize and store the policy; returns Ok(policy)"""
    if raw.get("mode") not in (MODE_GLOBAL, MODE_PER_MODEL):
        return validation_error("bad_request:settings", f"Unknown free message mode: {raw.get('mode')!r}")

    policy = parse_free_message_policy(raw)
    value = json.dumps(policy.to_dict())

    try:
        row = db.query(SystemSetting).filter(SystemSetting.key == FREE_MESSAGE_SETTINGS_KEY).first()
        if row is None:
            db.add(SystemSetting(key=FREE_MESSAGE_SETTINGS_KEY, value=value))
        else:
            row.value = value
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error saving free message policy: {e}", exc_info=True)
        return storage_error("Failed to save free message settings")

    logger.info(f"Free message policy set to {policy.to_dict()}")
    return Ok(policy)
