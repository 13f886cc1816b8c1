"""
Session request model

The request is the immutable business context a user submits. Artifact
fingerprints are derived from subsets of these fields, so instances are
frozen once constructed.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FileAttachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    mime_type: str
    data: str = Field(..., description="Base64-encoded file payload")


class SessionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    industry: str = Field(..., min_length=1)
    icp_titles: str = Field(..., min_length=1)
    feedback_item: str = Field(..., min_length=1)
    feedback_type: str = ""
    circumstances: str = ""
    company_website: Optional[str] = None
    solutions: Optional[str] = None
    core_problems: Optional[str] = None
    competitors: List[str] = Field(default_factory=list)
    seo_keywords: List[str] = Field(default_factory=list)
    company_size: List[str] = Field(default_factory=list)
    company_revenue: List[str] = Field(default_factory=list)
    files: List[FileAttachment] = Field(default_factory=list)

    @field_validator("competitors", "seo_keywords", "company_size", "company_revenue", mode="before")
    @classmethod
    def _split_csv(cls, value):
        # Form inputs arrive as comma separated strings
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @property
    def title(self) -> str:
        return self.feedback_item.strip()
