"""Pydantic schemas for subscriptions"""
from pydantic import BaseModel


class CheckoutRequest(BaseModel):
    plan_id: int
