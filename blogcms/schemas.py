from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime


# --- Tag ---

class TagResponse(BaseModel):
    id: int
    name: str
    model_config = ConfigDict(from_attributes=True)


# --- User ---

class UserBase(BaseModel):
    username: str = Field(max_length=50)
    email: str = Field(max_length=255)
    display_name: str | None = None
    bio: str | None = None
    avatar_url: str | None = None


class UserCreate(UserBase):
    role: str = Field("USER", pattern="^(ADMIN|EDITOR|USER)$")


class UserResponse(UserBase):
    id: int
    role: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ProfileUpdate(BaseModel):
    """Fields a user may change on their own profile; email is not one of them."""
    username: str | None = None
    display_name: str | None = Field(None, max_length=100)
    bio: str | None = None
    avatar_url: str | None = Field(None, max_length=2048)


class RoleUpdate(BaseModel):
    role: str


class UserDetail(UserResponse):
    articles: list["ArticleResponse"] = []


class AuthorSummary(BaseModel):
    id: int
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    model_config = ConfigDict(from_attributes=True)


# --- Comment ---

class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=1000)
    parent_id: int | None = None
    image_url: str | None = Field(None, max_length=2048)


class CommentResponse(BaseModel):
    id: int
    content: str
    image_url: str | None
    article_id: int
    author_id: int
    parent_id: int | None
    created_at: datetime
    author: AuthorSummary | None = None
    model_config = ConfigDict(from_attributes=True)


class CommentNode(CommentResponse):
    replies: list["CommentNode"] = []


class CommentPage(BaseModel):
    comments: list[CommentNode]
    has_more: bool
    total_top_level: int
    total_all: int


class DeleteResult(BaseModel):
    success: bool


# --- Article ---

class ArticleBase(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    excerpt: str | None = Field(None, max_length=500)
    cover_image: str | None = Field(None, max_length=2048)
    is_published: bool = False
    tags: list[str] = Field(default_factory=list, max_length=3)


class ArticleCreate(ArticleBase):
    pass


class ArticleUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=200)
    content: str | None = Field(None, min_length=1)
    excerpt: str | None = Field(None, max_length=500)
    cover_image: str | None = Field(None, max_length=2048)
    is_published: bool | None = None
    tags: list[str] | None = Field(None, max_length=3)


class ArticleResponse(BaseModel):
    id: int
    title: str
    slug: str
    excerpt: str | None
    cover_image: str | None = None
    view_count: int
    is_published: bool
    published_at: datetime | None
    created_at: datetime
    updated_at: datetime | None = None
    user_id: int
    author: UserResponse | None = None
    tags: list[TagResponse] = []
    model_config = ConfigDict(from_attributes=True)


class ArticleDetail(ArticleResponse):
    content: str


# --- View counter ---

class ViewCountResponse(BaseModel):
    success: bool
    views: int | None = None
    error: str | None = None


# --- Site settings ---

class SiteSettingsUpdate(BaseModel):
    site_name: str = Field(min_length=1, max_length=200)
    logo_url: str | None = None
    favicon_url: str | None = None
    meta_description: str | None = Field(None, max_length=500)
    footer_text: str | None = None


class SiteSettingsResponse(SiteSettingsUpdate):
    id: str
    updated_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


# --- RSS sources ---

class RSSSourceCreate(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    name: str | None = Field(None, max_length=200)


class RSSSourceUpdate(BaseModel):
    url: str | None = Field(None, max_length=2048)
    name: str | None = Field(None, min_length=1, max_length=200)
    enabled: bool | None = None


class RSSSourceResponse(BaseModel):
    id: int
    name: str
    url: str
    enabled: bool
    is_default: bool
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# --- Uploads ---

class UploadResponse(BaseModel):
    success: bool
    url: str
    filename: str


# --- Pagination ---

class PaginatedResponse(BaseModel):
    items: list  # Will be typed in router
    total: int
    page: int
    page_size: int
    pages: int


# --- Metrics ---

class MetricsResponse(BaseModel):
    total_articles: int
    total_comments: int
    total_users: int
    total_views: int
    avg_comments_per_article: float
    cache_info: dict = {}


# Required for forward-reference resolution
UserDetail.model_rebuild()
CommentNode.model_rebuild()
