"""Common schemas for the ApprovalHub API."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy import inspect as sa_inspect


class SignatureResponse(BaseModel):
    id: int
    entity_id: str
    action: str
    role: str
    level: int
    remarks: Optional[str]
    actor_id: Optional[str]
    actor_name: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationResponse(BaseModel):
    id: int
    workflow_id: int
    entity_id: str
    role: str
    partition_value: Optional[str]
    level: int
    status: str
    message: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class RemarksRequest(BaseModel):
    remarks: Optional[str] = Field(None, max_length=2000)


class BatchResponse(BaseModel):
    succeeded: List[str] = []
    failed: List[Dict[str, Any]] = []


def entity_to_dict(entity: Any) -> Dict[str, Any]:
    """JSON-ready column values of a mapped entity."""
    mapper = sa_inspect(entity).mapper
    return jsonable_encoder({attr.key: getattr(entity, attr.key) for attr in mapper.column_attrs})
