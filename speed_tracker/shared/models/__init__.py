"""
Pydantic-модели протокола и HTTP API.
"""

from speed_tracker.shared.models.member import MemberRecord
from speed_tracker.shared.models.messages import (
    Envelope,
    ErrorEnvelope,
    GroupHornEnvelope,
    HornMessage,
    JoinMessage,
    PongEnvelope,
    RegisterMessage,
    SpeedMessage,
    UsersEnvelope,
)
from speed_tracker.shared.models.common import (
    GroupListResponse,
    GroupSummary,
    HealthStatus,
    StatsResponse,
    UsersResponse,
)

__all__ = [
    "MemberRecord",
    "Envelope",
    "ErrorEnvelope",
    "GroupHornEnvelope",
    "HornMessage",
    "JoinMessage",
    "PongEnvelope",
    "RegisterMessage",
    "SpeedMessage",
    "UsersEnvelope",
    "GroupListResponse",
    "GroupSummary",
    "HealthStatus",
    "StatsResponse",
    "UsersResponse",
]
