"""Approval gate schemas."""
from datetime import datetime
from typing import Optional, Any
from uuid import UUID

from pydantic import Field

from erp_receiving.schemas.base import BaseResponseSchema, BaseCreateSchema


class ApprovalDecision(BaseCreateSchema):
    notes: Optional[str] = None


class ApprovalResponse(BaseResponseSchema):
    id: UUID
    entity_type: str
    entity_id: UUID
    stage_key: str
    stage_label: Optional[str] = None
    sequence: int = 1
    status: str
    reviewer_id: Optional[UUID] = None
    decision_note: Optional[str] = None
    decided_at: Optional[datetime] = None
    assigned_department: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="approval_metadata")
    created_by: Optional[UUID] = None
    created_at: datetime


class ApprovalDecisionResponse(BaseResponseSchema):
    message: str
    approval: ApprovalResponse
    side_effects: dict[str, Any] = {}
