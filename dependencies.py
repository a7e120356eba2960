import logging
from typing import Annotated

from fastapi import Request, Depends, HTTPException
from firebase_admin.auth import verify_id_token

from config import Settings
from models.user import User
from services.feed import FeedStateController
from services.like_store import LikeStore
from services.sessions import FeedSessions

logger = logging.getLogger(__name__)


async def get_settings(request: Request) -> Settings:
    """Get settings from app state"""
    return request.app.state.settings


async def get_current_user(request: Request) -> User:
    """
    Verify Firebase ID token from Authorization header and return user info
    """
    authorization = request.headers.get("Authorization")
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Invalid authorization header"
        )

    token = authorization.split("Bearer ")[1].strip()
    settings: Settings = request.app.state.settings
    if settings.backend == "memory":
        # local development: the bearer token is the user id
        if not token:
            raise HTTPException(status_code=401, detail="Invalid authentication token")
        return User(user_id=token)

    try:
        # Verify the Firebase ID token
        decoded_token = verify_id_token(token, check_revoked=True, clock_skew_seconds=10)
        return User(
            user_id=decoded_token["uid"],
            email=decoded_token.get("email"),
        )
    except Exception as e:
        logger.warning("Invalid authentication token: %s", e)
        raise HTTPException(
            status_code=401,
            detail=f"Invalid authentication token: {str(e)}"
        )


async def get_sessions(request: Request) -> FeedSessions:
    """Get the feed sessions from app state"""
    return request.app.state.sessions


async def get_like_store(
        sessions: Annotated[FeedSessions, Depends(get_sessions)],
        user: Annotated[User, Depends(get_current_user)],
) -> LikeStore:
    """Like store acting on behalf of the current user"""
    return sessions.like_store(user)


async def get_feed(
        sessions: Annotated[FeedSessions, Depends(get_sessions)],
        user: Annotated[User, Depends(get_current_user)],
) -> FeedStateController:
    """The current user's feed controller, loaded on first use"""
    return await sessions.get(user)


CurrentUser = Annotated[User, Depends(get_current_user)]
Sessions = Annotated[FeedSessions, Depends(get_sessions)]
Store = Annotated[LikeStore, Depends(get_like_store)]
Feed = Annotated[FeedStateController, Depends(get_feed)]
