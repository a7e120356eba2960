import asyncio
import logging
from typing import Callable, Iterable, List, Optional, Set

from models.feed import DisplayMode, FeedState, FeedStatus
from models.post import Post, PostWithLikeState
from models.user import User
from services.errors import BackendUnavailable, FeedClosed, NotAuthenticated
from services.like_store import LikeStore

logger = logging.getLogger(__name__)

Listener = Callable[["FeedStateController"], None]


def merge_like_state(posts: Iterable[Post], liked_ids: Set[str]) -> List[PostWithLikeState]:
    """Join the shared posts with the user's like set by post id, keeping post order"""
    return [
        PostWithLikeState(post=post, is_liked_by_current_user=post.id in liked_ids)
        for post in posts
    ]


def apply_display_mode(entries: Iterable[PostWithLikeState], mode: DisplayMode) -> List[PostWithLikeState]:
    if mode is DisplayMode.LIKED_ONLY:
        return [entry for entry in entries if entry.is_liked_by_current_user]
    return list(entries)


class FeedStateController:
    """
    Display-ready feed for one user: posts merged with that user's likes,
    filtered by the display mode.

    State moves LOADING -> READY | EMPTY | FAILED on every refresh. Likes are
    applied optimistically: toggle_like() changes the merged list right away
    and persists in the background, reconciling with the stored result.
    """

    def __init__(
            self,
            store: LikeStore,
            user: Optional[User],
            rollback_on_failure: bool = True
    ):
        self.store = store
        self.user = user
        self.rollback_on_failure = rollback_on_failure

        self._state = FeedState.loading()
        self._entries: List[PostWithLikeState] = []
        self._mode = DisplayMode.ALL
        self._last_error: Optional[str] = None
        self._listeners: List[Listener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._generation = 0
        self._disposed = False

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def entries(self) -> List[PostWithLikeState]:
        """The full merged list, regardless of display mode"""
        return list(self._entries)

    @property
    def display_mode(self) -> DisplayMode:
        return self._mode

    @property
    def show_liked_only(self) -> bool:
        return self._mode is DisplayMode.LIKED_ONLY

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def disposed(self) -> bool:
        return self._disposed

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener after every state change. Returns a function that unsubscribes"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def entry(self, post_id: str) -> Optional[PostWithLikeState]:
        for entry in self._entries:
            if entry.post.id == post_id:
                return entry
        return None

    def start(self) -> asyncio.Task:
        """Kick off the initial load. Must be called from a running event loop"""
        return self._spawn(self.refresh())

    async def refresh(self) -> FeedState:
        self._ensure_open()
        self._generation += 1
        generation = self._generation
        self._set_state(FeedState.loading())

        try:
            posts = await self.store.fetch_all_posts()
        except BackendUnavailable as e:
            if self._is_stale(generation):
                return self._state
            logger.warning("Error fetching posts: %s", e)
            self._entries = []
            self._set_state(FeedState.failed(str(e)))
            return self._state

        liked: Set[str] = set()
        if posts:
            try:
                liked = await self.store.fetch_like_set(self.user)
            except (BackendUnavailable, NotAuthenticated) as e:
                # an unreadable like set still lets the user read the feed
                logger.warning("Error checking user likes, showing posts as not liked: %s", e)

        if self._is_stale(generation):
            return self._state
        self._entries = merge_like_state(posts, liked)
        self._set_state(self._visible_state())
        return self._state

    async def set_display_mode(self, show_liked_only: bool) -> FeedState:
        """
        Switch between all posts and liked posts only.

        Entering liked-only refetches so the like state is fresh; going back to
        all posts filters the merged list already in memory.
        """
        self._ensure_open()
        self._mode = DisplayMode.LIKED_ONLY if show_liked_only else DisplayMode.ALL
        if self._mode is DisplayMode.LIKED_ONLY:
            return await self.refresh()
        self._update_view()
        return self._state

    def toggle_like(self, post_id: str) -> asyncio.Task:
        """
        Flip the like on post_id in memory immediately, then persist it.

        Returns the task persisting the change; it resolves to the reconciled
        entry, or None when the backend call failed.

        Raises:
            KeyError: the post is not part of the merged feed
        """
        self._ensure_open()
        previous = self.entry(post_id)
        if previous is None:
            raise KeyError(post_id)

        known_like_count = previous.post.like_count
        now_liked = not previous.is_liked_by_current_user
        optimistic_count = known_like_count + 1 if now_liked else max(known_like_count - 1, 0)
        self._replace_entry(post_id, now_liked, optimistic_count)
        self._update_view()

        return self._spawn(self._persist_toggle(post_id, known_like_count, previous, self._generation))

    async def _persist_toggle(
            self,
            post_id: str,
            known_like_count: int,
            previous: PostWithLikeState,
            generation: int
    ) -> Optional[PostWithLikeState]:
        try:
            new_liked, new_like_count = await self.store.toggle_like(self.user, post_id, known_like_count)
        except (BackendUnavailable, NotAuthenticated) as e:
            if self._disposed:
                return None
            logger.warning("Error toggling like on post %s: %s", post_id, e)
            self._last_error = str(e)
            # a refresh started since the toggle owns the entry now
            if self.rollback_on_failure and generation == self._generation:
                self._replace_entry(post_id, previous.is_liked_by_current_user, previous.post.like_count)
            self._update_view()
            return None

        if self._disposed:
            return None
        self._last_error = None
        self._replace_entry(post_id, new_liked, new_like_count)
        self._update_view()
        return self.entry(post_id)

    async def wait_idle(self) -> None:
        """Wait for every background load and toggle started so far"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def settle(self, task: asyncio.Task):
        """
        Wait for a task this controller started and return its result.

        The task keeps running if the caller is cancelled. If dispose() cancels
        the task instead, the caller gets FeedClosed rather than CancelledError.
        """
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._disposed and task.cancelled():
                raise FeedClosed() from None
            raise

    def dispose(self) -> None:
        """Cancel in-flight work. Results arriving later are dropped and later actions raise FeedClosed"""
        self._disposed = True
        self._listeners.clear()
        for task in list(self._tasks):
            task.cancel()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _ensure_open(self) -> None:
        if self._disposed:
            raise FeedClosed()

    def _is_stale(self, generation: int) -> bool:
        return self._disposed or generation != self._generation

    def _visible_state(self) -> FeedState:
        return FeedState.from_visible(apply_display_mode(self._entries, self._mode))

    def _replace_entry(self, post_id: str, liked: bool, like_count: int) -> None:
        for index, entry in enumerate(self._entries):
            if entry.post.id == post_id:
                self._entries[index] = entry.model_copy(update={
                    "post": entry.post.model_copy(update={"like_count": like_count}),
                    "is_liked_by_current_user": liked,
                })
                return

    def _update_view(self) -> None:
        # a pending refresh or a failed load owns the state until the next refresh completes
        if self._state.status in (FeedStatus.LOADING, FeedStatus.FAILED):
            self._notify()
            return
        self._set_state(self._visible_state())

    def _set_state(self, state: FeedState) -> None:
        self._state = state
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Feed listener failed")
