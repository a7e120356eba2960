from typing import List

from fastapi import APIRouter, HTTPException

from dependencies import Store
from models.post import Post

router = APIRouter()


@router.get("", response_model=List[Post])
async def get_posts(store: Store) -> List[Post]:
    """Get all posts, newest first"""
    return await store.fetch_all_posts()


@router.get("/{post_id}", response_model=Post)
async def get_post(post_id: str, store: Store) -> Post:
    """Get a single post by ID"""
    post = await store.fetch_post(post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return post
