from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TermRef(BaseModel):
    """A taxonomy term referenced by an item (``<category domain=... nicename=...>``)."""

    taxonomy: str
    slug: str
    name: str


class TermDefinition(BaseModel):
    """A channel-level term (``wp:category``, ``wp:tag`` or ``wp:term``)."""

    taxonomy: str
    slug: str
    name: str
    parent_slug: Optional[str] = None


class Author(BaseModel):
    login: str
    email: Optional[str] = None
    display_name: Optional[str] = None


CommentStatus = Literal["approved", "pending", "spam"]


class Comment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    author: Optional[str] = None
    author_email: Optional[str] = Field(None, alias="authorEmail")
    author_url: Optional[str] = Field(None, alias="authorUrl")
    content: str = ""
    date: Optional[datetime] = None
    approved: CommentStatus = "pending"
    parent_id: Optional[str] = Field(None, alias="parentId")
    type: str = "comment"

    @field_validator("parent_id", mode="before")
    @classmethod
    def _zero_is_root(cls, v: Optional[str]):
        # WordPress writes 0 for "no parent"
        if v is None:
            return None
        v = str(v).strip()
        return None if v in ("", "0") else v


class PostItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["post"] = "post"
    external_id: str = Field(..., alias="externalId", min_length=1)
    wp_id: Optional[str] = Field(None, alias="wpId")
    title: str = ""
    slug: str = ""
    html: str = ""
    excerpt: Optional[str] = None
    author: Optional[str] = None
    status: str = "publish"
    published_at: Optional[datetime] = Field(None, alias="publishedAt")
    original_url: Optional[str] = Field(None, alias="originalUrl")
    categories: list[TermRef] = Field(default_factory=list)
    tags: list[TermRef] = Field(default_factory=list)
    terms: list[TermRef] = Field(default_factory=list)
    featured_image_id: Optional[str] = Field(None, alias="featuredImageId")
    comments: list[Comment] = Field(default_factory=list)

    @property
    def identifier(self) -> str:
        return self.external_id or self.title


class AttachmentItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["attachment"] = "attachment"
    external_id: str = Field(..., alias="externalId", min_length=1)
    wp_id: Optional[str] = Field(None, alias="wpId")
    title: str = ""
    attachment_url: str = Field("", alias="attachmentUrl")
    alt: Optional[str] = None
    parent_id: Optional[str] = Field(None, alias="parentId")

    @property
    def identifier(self) -> str:
        return self.external_id or self.attachment_url


ImportItem = Annotated[Union[PostItem, AttachmentItem], Field(discriminator="kind")]
