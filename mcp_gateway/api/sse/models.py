"""
SSE Models
==========

Pydantic models for Server-Sent Events infrastructure.
Defines delivery reports and transport statistics.
"""

from typing import Dict
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel


class DeliveryReport(BaseModel):
    """Outcome of a fan-out across several sessions."""

    delivered: int = Field(default=0, ge=0, description="Frames written to live sinks")
    queued: int = Field(default=0, ge=0, description="Notifications queued for later delivery")

    @property
    def total(self) -> int:
        return self.delivered + self.queued


class TransportStatistics(BaseModel):
    """Snapshot of the transport and its session registry."""

    transport_type: str = Field(default="SSE", description="Transport identifier")
    total_sessions: int = Field(default=0, ge=0, description="Registered sessions")
    users_with_sessions: int = Field(default=0, ge=0, description="Distinct users with sessions")
    sessions_per_user: Dict[str, int] = Field(default_factory=dict, description="Sessions by user")
    active_writers: int = Field(default=0, ge=0, description="Sessions with a live sink")
    queued_notifications: int = Field(default=0, ge=0, description="Notifications awaiting delivery")
    event_id_counter: int = Field(default=0, ge=0, description="Last event id handed out")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
