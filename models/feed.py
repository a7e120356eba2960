from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.post import PostWithLikeState


class DisplayMode(Enum):
    ALL = "all"
    LIKED_ONLY = "liked_only"


class FeedStatus(Enum):
    LOADING = "loading"
    EMPTY = "empty"
    READY = "ready"
    FAILED = "failed"


class FeedState(BaseModel):
    """Snapshot of what the feed currently shows"""
    status: FeedStatus
    posts: List[PostWithLikeState] = []
    reason: Optional[str] = None

    @classmethod
    def loading(cls) -> "FeedState":
        return cls(status=FeedStatus.LOADING)

    @classmethod
    def failed(cls, reason: str) -> "FeedState":
        return cls(status=FeedStatus.FAILED, reason=reason)

    @classmethod
    def from_visible(cls, posts: List[PostWithLikeState]) -> "FeedState":
        if not posts:
            return cls(status=FeedStatus.EMPTY)
        return cls(status=FeedStatus.READY, posts=posts)


class DisplayModeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    show_liked_only: bool = Field(..., alias="showLikedOnly")


class FeedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    state: FeedState
    show_liked_only: bool = Field(False, alias="showLikedOnly")
    last_error: Optional[str] = Field(None, alias="lastError")


class ToggleLikeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    post_id: str = Field(..., alias="postId")
    entry: Optional[PostWithLikeState] = None
    feed: FeedResponse
