import asyncio
import logging
from collections import OrderedDict
from typing import Dict

from models.user import User
from services.backend import BackendFactory
from services.feed import FeedStateController
from services.like_store import LikeStore

logger = logging.getLogger(__name__)


class FeedSessions:
    """
    Keeps one feed controller per signed-in user for as long as the user keeps it open.

    At most max_sessions users are held at once; the least recently active
    user is closed, and their backend released, to make room for a new one.
    """

    def __init__(
            self,
            backends: BackendFactory,
            rollback_on_failure: bool = True,
            max_sessions: int = 1000
    ):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.backends = backends
        self.rollback_on_failure = rollback_on_failure
        self.max_sessions = max_sessions
        self._controllers: Dict[str, FeedStateController] = {}
        self._recent: "OrderedDict[str, None]" = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._recent)

    def like_store(self, user: User) -> LikeStore:
        self._touch(user.user_id)
        return LikeStore(self.backends.for_user(user))

    async def get(self, user: User) -> FeedStateController:
        """
        Return the user's controller, creating and loading it on first use

        Raises:
            FeedClosed: the feed was closed before its first load finished
        """
        async with self._lock:
            controller = self._controllers.get(user.user_id)
            if controller is None:
                controller = FeedStateController(
                    self.like_store(user),
                    user,
                    rollback_on_failure=self.rollback_on_failure,
                )
                self._controllers[user.user_id] = controller
                logger.info("Opened feed for user %s", user.user_id)
                initial_load = controller.start()
            else:
                self._touch(user.user_id)
                initial_load = None
        if initial_load is not None:
            await controller.settle(initial_load)
        return controller

    def close(self, user_id: str) -> bool:
        """Dispose the user's controller and release their backend. Returns whether a feed was open"""
        self._recent.pop(user_id, None)
        controller = self._controllers.pop(user_id, None)
        self.backends.release(user_id)
        if controller is None:
            return False
        controller.dispose()
        logger.info("Closed feed for user %s", user_id)
        return True

    def close_all(self) -> None:
        for user_id in list(self._recent):
            self.close(user_id)
        self.backends.close()

    def _touch(self, user_id: str) -> None:
        self._recent[user_id] = None
        self._recent.move_to_end(user_id)
        while len(self._recent) > self.max_sessions:
            oldest = next(iter(self._recent))
            logger.info("Evicting idle feed session for user %s", oldest)
            self.close(oldest)
