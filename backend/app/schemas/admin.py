"""Pydantic schemas for admin operations"""
from pydantic import BaseModel, Field
from typing import Literal, Optional


class GrantCreditsRequest(BaseModel):
    tokens: int = Field(gt=0)
    expires_in_days: Optional[int] = None


class PricingPlanCreate(BaseModel):
    key: str
    name: str
    description: Optional[str] = None
    price_in_minor_units: int = Field(ge=0)
    token_allowance: int = Field(ge=0)
    billing_cycle_days: int = Field(ge=1)
    is_active: bool = True


class PricingPlanUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price_in_minor_units: Optional[int] = Field(default=None, ge=0)
    token_allowance: Optional[int] = Field(default=None, ge=0)
    billing_cycle_days: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None


class ModelConfigCreate(BaseModel):
    key: str = Field(min_length=1, max_length=64)
    display_name: str
    input_cost_per_million: Optional[float] = None
    output_cost_per_million: Optional[float] = None
    free_messages_per_day: Optional[int] = Field(default=None, ge=0)
    is_enabled: bool = True


class ModelConfigUpdate(BaseModel):
    """Only fields present in the request body are applied"""
    display_name: Optional[str] = None
    input_cost_per_million: Optional[float] = None
    output_cost_per_million: Optional[float] = None
    free_messages_per_day: Optional[int] = Field(default=None, ge=0)
    is_enabled: Optional[bool] = None


class FreeMessageSettingsUpdate(BaseModel):
    mode: Literal["global", "per-model"]
    globalLimit: Optional[float] = None
