from fastapi import APIRouter, HTTPException, Request, Query
from typing import Dict, List, Optional
import logging
from database import get_db
from database_schemas import DELETED_PLACEHOLDER, POSTS, post_liker_path, post_path, thread_path, thread_post_index_path
from encryption import DECRYPTION_FAILED, decrypt_text, derive_user_id, encrypt_text, get_cipher, is_legacy_blob
from schemas import PostsQuery, PostCreate, PostUpdate, PostAction, PostLikeRequest, PostResponse
from utils.post_tree import collect_descendants, nest_posts
from utils.route_helpers import (
    UserResolver, author_updates, dispatch_action, get_post_or_404, get_thread_or_404, key_set, now_ms,
    parse_author, parse_payload, sanitize_content
)

router = APIRouter(tags=["posts"])
logger = logging.getLogger(__name__)


def read_content(value) -> str:
    if not isinstance(value, str):
        return ""
    if value.startswith("gAAAAA"):
        return decrypt_text(value)
    if is_legacy_blob(value):
        return get_cipher().decrypt_legacy_text(value)
    # Written before content encryption was introduced
    return value


def store_content(text: str) -> str:
    cleaned = sanitize_content(text).strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail="content cannot be empty")
    return encrypt_text(cleaned)


def load_thread_posts(thread_id: str, thread: Optional[dict] = None) -> Dict[str, dict]:
    """All posts of a thread, read through its ``postIds`` index.

    The realtime database only filters on indexed children, so posts are
    never looked up by ``threadId``. Index entries whose post is gone or
    belongs to another thread are skipped.
    """
    db = get_db()
    posts = {}
    for post_id in sorted(key_set((thread or {}).get("postIds"))):
        post = db.get(post_path(post_id))
        if isinstance(post, dict) and post.get("threadId") == thread_id:
            posts[post_id] = post
    return posts


def get_post_response(post_id: str, post: dict, users: UserResolver, current_user_id: Optional[str] = None) -> PostResponse:
    liked_by = sorted(key_set(post.get("likedBy")))
    deleted = bool(post.get("deleted", False))
    content = DELETED_PLACEHOLDER if deleted else read_content(post.get("content"))
    if content == DECRYPTION_FAILED:
        logger.warning("Could not decrypt content of post %s", post_id)
    return PostResponse(
        id=post_id,
        thread_id=post.get("threadId"),
        parent_id=post.get("parentId") or None,
        content=content,
        author=users.for_record(post),
        created_at=post.get("createdAt"),
        updated_at=post.get("updatedAt"),
        likes=len(liked_by),
        liked_by=liked_by,
        is_liked=current_user_id in liked_by if current_user_id else False,
        deleted=deleted,
        deleted_at=post.get("deletedAt"),
    )


def thread_post_responses(params: dict) -> List[PostResponse]:
    query = parse_payload(PostsQuery, params)
    thread = get_thread_or_404(query.thread_id)
    posts = load_thread_posts(query.thread_id, thread)
    current_user_id = derive_user_id(query.current_user) if query.current_user else None
    users = UserResolver()
    responses = [get_post_response(pid, post, users, current_user_id) for pid, post in posts.items()]
    responses.sort(key=lambda p: (p.created_at or 0, p.id))
    return responses


def get_posts(params: dict) -> List[dict]:
    return [p.model_dump(by_alias=True, exclude={"replies"}) for p in thread_post_responses(params)]


def get_post_tree(params: dict) -> List[dict]:
    return [p.model_dump(by_alias=True) for p in nest_posts(thread_post_responses(params))]


def get_all_posts(params: dict) -> List[dict]:
    posts = get_db().get(POSTS) or {}
    users = UserResolver()
    responses = [get_post_response(pid, post, users) for pid, post in posts.items() if isinstance(post, dict)]
    responses.sort(key=lambda p: (p.created_at or 0, p.id))
    return [p.model_dump(by_alias=True, exclude={"replies"}) for p in responses]


def create_post(body: dict) -> dict:
    data = parse_payload(PostCreate, body)
    db = get_db()
    thread = get_thread_or_404(data.thread_id)
    if thread.get("readOnly"):
        raise HTTPException(status_code=400, detail="Thread is read-only")
    if data.parent_id:
        parent = db.get(post_path(data.parent_id))
        if not isinstance(parent, dict) or parent.get("threadId") != data.thread_id:
            raise HTTPException(status_code=400, detail="parentId does not reference a post in this thread")
    content = store_content(data.content)
    author_id, updates = author_updates(parse_author(data.author))
    post_id = db.generate_key()
    updates[post_path(post_id)] = {
        "threadId": data.thread_id,
        "parentId": data.parent_id,
        "content": content,
        "authorId": author_id,
        "createdAt": now_ms(),
        "likes": 0,
        "deleted": False,
    }
    updates[thread_post_index_path(data.thread_id, post_id)] = True
    db.update(updates)
    logger.info("Created post %s in thread %s", post_id, data.thread_id)
    return {"id": post_id}


def update_post(body: dict) -> dict:
    data = parse_payload(PostUpdate, body)
    post = get_post_or_404(data.post_id)
    if post.get("deleted"):
        raise HTTPException(status_code=400, detail="Cannot edit a deleted post")
    base = post_path(data.post_id)
    get_db().update({
        f"{base}/content": store_content(data.content),
        f"{base}/updatedAt": now_ms(),
    })
    return {"success": True}


def soft_delete_post(body: dict) -> dict:
    data = parse_payload(PostAction, body)
    post = get_post_or_404(data.post_id)
    if post.get("deleted"):
        return {"success": True}
    base = post_path(data.post_id)
    get_db().update({
        f"{base}/originalContent": post.get("content"),
        f"{base}/content": encrypt_text(DELETED_PLACEHOLDER),
        f"{base}/deleted": True,
        f"{base}/deletedAt": now_ms(),
    })
    logger.info("Soft-deleted post %s", data.post_id)
    return {"success": True}


def restore_post(body: dict) -> dict:
    data = parse_payload(PostAction, body)
    post = get_post_or_404(data.post_id)
    base = post_path(data.post_id)
    updates = {
        f"{base}/deleted": False,
        f"{base}/deletedAt": None,
        f"{base}/originalContent": None,
    }
    if post.get("originalContent"):
        updates[f"{base}/content"] = post["originalContent"]
    get_db().update(updates)
    logger.info("Restored post %s", data.post_id)
    return {"success": True}


def like_post(body: dict) -> dict:
    data = parse_payload(PostLikeRequest, body)
    post = get_post_or_404(data.post_id)
    user_id = derive_user_id(data.user_email)
    liked_by = key_set(post.get("likedBy"))
    liked_by.symmetric_difference_update({user_id})
    base = post_path(data.post_id)
    updates = {f"{base}/likes": len(liked_by)}
    if isinstance(post.get("likedBy"), list):
        updates[f"{base}/likedBy"] = {uid: True for uid in liked_by} or None
    else:
        updates[post_liker_path(data.post_id, user_id)] = True if user_id in liked_by else None
    get_db().update(updates)
    return {"success": True, "likes": len(liked_by), "likedBy": sorted(liked_by)}


def admin_delete_post(body: dict) -> dict:
    data = parse_payload(PostAction, body)
    db = get_db()
    post = get_post_or_404(data.post_id)
    thread_id = post.get("threadId")
    thread = db.get(thread_path(thread_id)) if thread_id else None
    posts = load_thread_posts(thread_id, thread) if thread_id else {}
    posts[data.post_id] = post
    doomed = collect_descendants(posts, data.post_id)
    updates = {}
    for post_id in doomed:
        updates[post_path(post_id)] = None
        if thread_id:
            updates[thread_post_index_path(thread_id, post_id)] = None
    db.update(updates)
    logger.info("Admin-deleted post %s and %d replies", data.post_id, len(doomed) - 1)
    return {"success": True, "deleted": doomed}


GET_ACTIONS = {
    "get-posts": get_posts,
    "get-post-tree": get_post_tree,
    "get-all-posts": get_all_posts,
}

POST_ACTIONS = {
    "create-post": create_post,
    "update-post": update_post,
    "like-post": like_post,
    "soft-delete-post": soft_delete_post,
    "restore-post": restore_post,
    "admin-delete-post": admin_delete_post,
}


@router.api_route("/posts", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def posts(request: Request, action: Optional[str] = Query(None)):
    return await dispatch_action(request, action, GET_ACTIONS, POST_ACTIONS, "posts")
