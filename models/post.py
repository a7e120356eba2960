from pydantic import BaseModel, ConfigDict, Field, field_validator


class Post(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    author_id: str = Field("", alias="authorId")
    author_name: str = Field("", alias="authorName")
    handle: str = ""
    text: str = ""
    like_count: int = Field(0, alias="likeCount")
    timestamp: int = 0

    @field_validator("like_count")
    @classmethod
    def clamp_like_count(cls, value: int) -> int:
        # counts maintained by clients can drift below zero
        return max(value, 0)


class PostWithLikeState(BaseModel):
    """A post paired with whether the current user likes it. Never persisted."""
    model_config = ConfigDict(populate_by_name=True)

    post: Post
    is_liked_by_current_user: bool = Field(False, alias="isLikedByCurrentUser")
