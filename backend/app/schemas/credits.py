"""Pydantic schemas for credits and usage"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class UsageRequest(BaseModel):
    chat_id: str = Field(min_length=1, max_length=64)
    input_tokens: float = Field(ge=0)
    output_tokens: float = Field(ge=0)


class AdmissionRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    chat_id: str = Field(min_length=1, max_length=64)
    model_config_id: Optional[int] = None
