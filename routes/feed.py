from fastapi import APIRouter, HTTPException

from dependencies import CurrentUser, Feed, Sessions
from models.feed import DisplayModeRequest, FeedResponse, ToggleLikeResponse
from services.feed import FeedStateController

router = APIRouter()


def feed_response(feed: FeedStateController) -> FeedResponse:
    return FeedResponse(
        state=feed.state,
        show_liked_only=feed.show_liked_only,
        last_error=feed.last_error,
    )


@router.get("", response_model=FeedResponse)
async def get_feed(feed: Feed) -> FeedResponse:
    """Get the current user's feed state and display mode"""
    return feed_response(feed)


@router.post("/refresh", response_model=FeedResponse)
async def refresh_feed(feed: Feed) -> FeedResponse:
    """Refetch posts and likes, e.g. to retry after a failed load"""
    await feed.refresh()
    return feed_response(feed)


@router.put("/mode", response_model=FeedResponse)
async def set_display_mode(request: DisplayModeRequest, feed: Feed) -> FeedResponse:
    """Show all posts or only the posts the current user liked"""
    await feed.set_display_mode(request.show_liked_only)
    return feed_response(feed)


@router.post("/posts/{post_id}/like", response_model=ToggleLikeResponse)
async def toggle_like(post_id: str, feed: Feed) -> ToggleLikeResponse:
    """Toggle like status for a post in the current user's feed"""
    try:
        pending = feed.toggle_like(post_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Post not found in feed")

    await feed.settle(pending)
    return ToggleLikeResponse(
        post_id=post_id,
        entry=feed.entry(post_id),
        feed=feed_response(feed),
    )


@router.delete("")
async def close_feed(sessions: Sessions, current_user: CurrentUser):
    """Dispose the current user's feed controller"""
    closed = sessions.close(current_user.user_id)
    return {"closed": closed}
