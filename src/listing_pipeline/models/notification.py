"""
NotificationRule model.

A user-defined alert whose natural-language text has already been parsed
into structured criteria. Absent criteria act as wildcards.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from .listing import IntentType


class NotificationRule(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    user_email: str | None = Field(default=None, description='Email of the owning user')
    nl_rule: str = Field(..., description='The rule as the user wrote it')

    parsed_intent: IntentType | None = None
    parsed_keywords: list[str] = Field(default_factory=list)
    parsed_category_ids: list[UUID] = Field(default_factory=list)
    parsed_price_min: Decimal | None = None
    parsed_price_max: Decimal | None = None

    notify_email: str | None = None
    is_active: bool = True
    last_triggered: datetime | None = None

    @property
    def recipient(self) -> str | None:
        """Explicit notify address, falling back to the owner's account email."""
        if self.notify_email and self.notify_email.strip():
            return self.notify_email
        return self.user_email
