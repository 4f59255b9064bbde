"""Newsletter and newsletter-source models.

Newsletter:
    One email pulled from the user's inbox, with its processing status.

NewsletterSource:
    A sender the user tracks. Sources control which senders are processed,
    carry a credibility score used in importance scoring, and a voice
    priority (0-10) used by the voice-updates view.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

NewsletterStatus = Literal["pending", "processing", "completed", "failed"]


class Newsletter(BaseModel):
    """An email newsletter fetched from Gmail."""

    id: int | None = None
    user_id: str = "default"
    gmail_message_id: str
    thread_id: str = ""
    subject: str = ""
    sender_email: str = ""
    sender_name: str = ""
    received_date: datetime
    content: str = Field(default="", repr=False)
    labels: list[str] = Field(default_factory=list)
    status: NewsletterStatus = "pending"
    source_id: int | None = None
    processed_at: datetime | None = None

    @property
    def sender_info(self) -> str:
        """Sender as 'Name <email>' for prompts."""
        return f"{self.sender_name} <{self.sender_email}>"

    def __str__(self) -> str:
        return f"Newsletter({self.gmail_message_id}, '{self.subject[:50]}')"


class NewsletterSource(BaseModel):
    """A tracked newsletter sender (address or bare domain)."""

    id: int | None = None
    user_id: str = "default"
    email_address: str
    name: str = ""
    category: str = ""
    description: str = ""
    is_active: bool = True
    voice_priority: int = Field(default=0, ge=0, le=10)
    credibility_score: float = Field(default=0.5, ge=0.0, le=1.0)
    last_content_at: datetime | None = None
    content_frequency: float = 0.0
    expertise_keywords: list[str] = Field(default_factory=list)

    @field_validator("email_address", mode="before")
    @classmethod
    def lowercase_address(cls, v: object) -> str:
        return str(v or "").strip().lower()

    def matches(self, sender_email: str) -> bool:
        """True if the sender is this address, or is at this bare domain."""
        sender = sender_email.strip().lower()
        if not sender:
            return False
        if "@" in self.email_address:
            return sender == self.email_address
        return sender.rsplit("@", 1)[-1] == self.email_address
