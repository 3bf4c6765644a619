from pydantic import BaseModel, Field


class DigestContent(BaseModel):
    """Message payload produced by the composer (or carried in a job payload)."""

    subject: str = Field(min_length=1, max_length=255)
    html: str = Field(min_length=1)
    text: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)
