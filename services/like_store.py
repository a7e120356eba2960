import logging
from typing import Any, List, Optional, Set, Tuple

from pydantic import ValidationError

from models.post import Post
from models.user import User
from services.backend import Backend, POSTS_PATH, USER_LIKES_PATH
from services.errors import NotAuthenticated

logger = logging.getLogger(__name__)


def _require_user(user: Optional[User], action: str) -> str:
    if user is None or not user.user_id.strip():
        raise NotAuthenticated(action)
    return user.user_id.strip()


def like_mark_path(user_id: str, post_id: str) -> str:
    return f"{USER_LIKES_PATH}/{user_id}/{post_id}"


def like_count_path(post_id: str) -> str:
    return f"{POSTS_PATH}/{post_id}/likeCount"


def decode_post(key: str, record: Any) -> Optional[Post]:
    """Build a Post from a stored record, or None when the record is unusable"""
    if not isinstance(record, dict):
        logger.warning("Skipping post '%s': record is not an object", key)
        return None
    data = dict(record)
    if not data.get("id"):
        data["id"] = key
    try:
        return Post.model_validate(data)
    except ValidationError as e:
        logger.warning("Skipping post '%s': %s", key, e.errors()[0].get("msg"))
        return None


class LikeStore:
    """
    Owns the shared posts collection and the per-user userLikes partitions.

    The like count lives on the shared post while the per-user marks live under
    userLikes/{uid}; the two are kept in step by the liking client, so they
    agree eventually rather than transactionally.
    """

    def __init__(self, backend: Backend):
        self.backend = backend

    async def fetch_all_posts(self) -> List[Post]:
        """Get all posts sorted by timestamp descending (newest first)"""
        records = await self.backend.read_collection(POSTS_PATH)
        posts = [post for post in (decode_post(key, record) for key, record in records) if post]
        # sorted() is stable, so equal timestamps keep the backend order
        return sorted(posts, key=lambda post: post.timestamp, reverse=True)

    async def fetch_post(self, post_id: str) -> Optional[Post]:
        """Get a post by ID"""
        record = await self.backend.read(f"{POSTS_PATH}/{post_id}")
        if record is None:
            return None
        return decode_post(post_id, record)

    async def fetch_like_set(self, user: Optional[User]) -> Set[str]:
        """
        Get the ids of the posts the user currently likes.

        Only a stored value of exactly boolean true counts as a like; leftover
        strings, numbers or false are read as "not liked" rather than as errors.
        """
        user_id = _require_user(user, "check likes")
        marks = await self.backend.read(f"{USER_LIKES_PATH}/{user_id}")
        if not isinstance(marks, dict):
            return set()

        liked = set()
        for post_id, value in marks.items():
            if value is True:
                liked.add(post_id)
            else:
                logger.debug("Ignoring malformed like value for %s/%s: %r", user_id, post_id, value)
        return liked

    async def toggle_like(
            self,
            user: Optional[User],
            post_id: str,
            known_like_count: int
    ) -> Tuple[bool, int]:
        """
        Flip the user's like on a post and write the adjusted like count

        Args:
            user: the signed-in principal
            post_id: the post to like or unlike
            known_like_count: the caller's last known likeCount, used as the base

        Returns:
            (new_is_liked, new_like_count)

        The count is computed here from known_like_count rather than incremented
        on the server, so concurrent togglers can overwrite each other's count.
        """
        user_id = _require_user(user, "like posts")
        if not post_id:
            raise ValueError("post_id cannot be empty")

        mark_path = like_mark_path(user_id, post_id)
        current = await self.backend.read(mark_path)
        new_liked = current is not True

        if new_liked:
            new_like_count = known_like_count + 1
            await self.backend.write_atomic({
                mark_path: True,
                like_count_path(post_id): new_like_count,
            })
        else:
            new_like_count = max(known_like_count - 1, 0)
            # mark first: an interrupted unlike under-counts instead of over-counting
            await self.backend.remove(mark_path)
            await self.backend.write(like_count_path(post_id), new_like_count)

        logger.info("User %s %s post %s (likeCount=%d)",
                    user_id, "liked" if new_liked else "unliked", post_id, new_like_count)
        return new_liked, new_like_count
