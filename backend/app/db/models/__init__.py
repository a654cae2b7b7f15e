"""ORM models exposed for metadata discovery."""
from app.db.models.agent_action_log import AgentActionLog
from app.db.models.calendar_event import CalendarEvent
from app.db.models.daily_generation import DailyGenerationLease, DailyGenerationMarker
from app.db.models.user import User

__all__ = [
    "AgentActionLog",
    "CalendarEvent",
    "DailyGenerationLease",
    "DailyGenerationMarker",
    "User",
]
