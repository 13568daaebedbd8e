"""
Blog Schemas
============

Request schemas for categories and posts.
"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class CategoryCreate(BaseModel):
    """Create a category. An empty slug is derived from the name."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(max_length=120)
    slug: Optional[str] = Field(None, max_length=80)
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=32)
    image_path: Optional[str] = Field(None, alias="imagePath")
    image_alt: Optional[str] = Field(None, alias="imageAlt", max_length=255)


class CategoryUpdate(BaseModel):
    """Partial category update."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, max_length=120)
    slug: Optional[str] = Field(None, max_length=80)
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=32)
    image_path: Optional[str] = Field(None, alias="imagePath")
    image_alt: Optional[str] = Field(None, alias="imageAlt", max_length=255)


class PostCreate(BaseModel):
    """Create a post. Tags accept a CSV/newline string or a list."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(max_length=255)
    slug: Optional[str] = Field(None, max_length=80)
    status: Literal["draft", "published"] = "draft"
    summary: str = ""
    content: str = ""
    cover_path: Optional[str] = Field(None, alias="coverPath")
    cover_alt: Optional[str] = Field(None, alias="coverAlt")
    category: Optional[str] = None
    tags: Union[str, list[str], None] = None
    seo_title: Optional[str] = Field(None, alias="seoTitle")
    seo_description: Optional[str] = Field(None, alias="seoDescription")
    canonical_url: Optional[str] = Field(None, alias="canonicalUrl")
    is_featured: bool = Field(False, alias="isFeatured")


class PostUpdate(BaseModel):
    """Partial post update."""

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(None, max_length=255)
    slug: Optional[str] = Field(None, max_length=80)
    status: Optional[Literal["draft", "published"]] = None
    summary: Optional[str] = None
    content: Optional[str] = None
    cover_path: Optional[str] = Field(None, alias="coverPath")
    cover_alt: Optional[str] = Field(None, alias="coverAlt")
    category: Optional[str] = None
    tags: Union[str, list[str], None] = None
    seo_title: Optional[str] = Field(None, alias="seoTitle")
    seo_description: Optional[str] = Field(None, alias="seoDescription")
    canonical_url: Optional[str] = Field(None, alias="canonicalUrl")
    is_featured: Optional[bool] = Field(None, alias="isFeatured")
