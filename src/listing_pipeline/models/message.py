"""
RawMessage model: one chat message as recorded by ingestion.

The text is immutable once recorded. The pipeline only ever writes the
embedding, the processed flag and the processing-error text; the processed
flag is the single source of truth for "needs (re)processing".
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class RawMessage(BaseModel):
    """A chat message from a trade group, before any extraction."""

    id: UUID = Field(default_factory=uuid4, description='Internal message UUID')
    group_id: UUID | None = Field(default=None, description='Chat group the message was posted in')
    external_message_id: str = Field(
        ..., description='Message ID assigned by the chat provider (unique)'
    )

    sender_phone: str | None = Field(default=None, description='Sender phone number')
    sender_name: str | None = Field(default=None, description='Sender display name')
    body: str | None = Field(default=None, description='Message text (may be empty for media)')
    media_url: str | None = Field(default=None, description='Media reference, if any')
    reply_to_external_id: str | None = Field(
        default=None, description='External ID of the quoted message when this is a reply'
    )

    received_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description='When the message was recorded',
    )

    # Pipeline-owned state
    embedding: list[float] | None = Field(default=None, description='Semantic embedding of the body')
    processed: bool = Field(default=False, description='True once the pipeline completed')
    processing_error: str | None = Field(
        default=None, description='Truncated error text of the last failed run'
    )

    @property
    def has_text(self) -> bool:
        """True when the body contains something other than whitespace."""
        return bool(self.body and self.body.strip())

    @property
    def is_reply(self) -> bool:
        return self.reply_to_external_id is not None
