from fastapi import APIRouter, HTTPException, Request, Query
from typing import List, Optional
import logging
import math
from database import get_db
from database_schemas import (
    FORUMS, forum_thread_index_path, post_path, thread_path, thread_subscriber_path
)
from encryption import derive_user_id
from routes.posts import load_thread_posts
from schemas import (
    ThreadCreate, ThreadUpdate, ThreadDelete, SortOrderUpdate, SubscriptionToggle,
    ThreadsQuery, ThreadQuery, ThreadResponse
)
from utils.route_helpers import (
    UserResolver, author_updates, dispatch_action, get_thread_or_404, key_set, now_ms,
    parse_author, parse_payload
)

router = APIRouter(tags=["forum"])
logger = logging.getLogger(__name__)


def forum_id_of(thread: dict) -> Optional[str]:
    # Older records used "group" or "groupId"
    return thread.get("forumId") or thread.get("groupId") or thread.get("group")


def sort_order_of(thread: dict):
    order = thread.get("sortOrder")
    if isinstance(order, bool) or not isinstance(order, (int, float)) or not math.isfinite(order):
        return thread.get("createdAt")
    return order


def get_thread_response(thread_id: str, thread: dict, users: UserResolver, current_user: Optional[str] = None) -> ThreadResponse:
    subscriber_ids = sorted(key_set(thread.get("subscribers")))
    current_user_id = derive_user_id(current_user) if current_user else None
    return ThreadResponse(
        id=thread_id,
        title=thread.get("title") or "",
        author=users.for_record(thread),
        forum_id=forum_id_of(thread),
        created_at=thread.get("createdAt"),
        updated_at=thread.get("updatedAt"),
        sort_order=sort_order_of(thread),
        read_only=bool(thread.get("readOnly", False)),
        deleted=bool(thread.get("deleted", False)),
        subscribers=[users.by_id(uid) for uid in subscriber_ids],
        is_subscribed=current_user_id in subscriber_ids if current_user_id else False,
        post_count=len(key_set(thread.get("postIds"))),
    )


def get_threads(params: dict) -> List[dict]:
    query = parse_payload(ThreadsQuery, params)
    db = get_db()
    thread_ids = key_set(db.get(f"{FORUMS}/{query.forum_id}/threadIds"))
    users = UserResolver()
    threads = []
    for thread_id in thread_ids:
        thread = db.get(thread_path(thread_id))
        if not isinstance(thread, dict):
            logger.warning("Forum %s indexes missing thread %s", query.forum_id, thread_id)
            continue
        threads.append(get_thread_response(thread_id, thread, users, query.current_user))
    threads.sort(key=lambda t: (t.sort_order if t.sort_order is not None else 0, t.created_at or 0, t.id))
    return [t.model_dump(by_alias=True) for t in threads]


def get_thread(params: dict) -> dict:
    query = parse_payload(ThreadQuery, params)
    thread = get_thread_or_404(query.thread_id)
    return get_thread_response(query.thread_id, thread, UserResolver(), query.current_user).model_dump(by_alias=True)


def create_thread(body: dict) -> dict:
    data = parse_payload(ThreadCreate, body)
    db = get_db()
    author = parse_author(data.author)
    author_id, updates = author_updates(author)
    thread_id = db.generate_key()
    created_at = now_ms()
    updates[thread_path(thread_id)] = {
        "title": data.title,
        "authorId": author_id,
        "forumId": data.forum_id,
        "createdAt": created_at,
        "sortOrder": created_at,
        "readOnly": False,
        "deleted": False,
    }
    updates[forum_thread_index_path(data.forum_id, thread_id)] = True
    db.update(updates)
    logger.info("Created thread %s in forum %s", thread_id, data.forum_id)
    return {"id": thread_id}


def update_thread(body: dict) -> dict:
    data = parse_payload(ThreadUpdate, body)
    if data.title is None and data.read_only is None and data.forum_id is None:
        raise HTTPException(status_code=400, detail="Nothing to update: provide title, readOnly or forumId")
    thread = get_thread_or_404(data.id)
    base = thread_path(data.id)
    updates = {f"{base}/updatedAt": now_ms()}
    if data.title is not None:
        updates[f"{base}/title"] = data.title
    if data.read_only is not None:
        updates[f"{base}/readOnly"] = data.read_only
    old_forum_id = forum_id_of(thread)
    if data.forum_id is not None and data.forum_id != old_forum_id:
        updates[f"{base}/forumId"] = data.forum_id
        if old_forum_id:
            updates[forum_thread_index_path(old_forum_id, data.id)] = None
        updates[forum_thread_index_path(data.forum_id, data.id)] = True
        logger.info("Moving thread %s from forum %s to %s", data.id, old_forum_id, data.forum_id)
    get_db().update(updates)
    return {"success": True}


def delete_thread(body: dict) -> dict:
    data = parse_payload(ThreadDelete, body)
    thread = get_thread_or_404(data.id)
    post_ids = sorted(load_thread_posts(data.id, thread))
    updates = {thread_path(data.id): None}
    forum_id = forum_id_of(thread)
    if forum_id:
        updates[forum_thread_index_path(forum_id, data.id)] = None
    for post_id in post_ids:
        updates[post_path(post_id)] = None
    get_db().update(updates)
    logger.info("Deleted thread %s with %d posts", data.id, len(post_ids))
    return {"success": True, "deleted": post_ids}


def update_sort_order(body: dict) -> dict:
    data = parse_payload(SortOrderUpdate, body)
    db = get_db()
    missing = [thread_id for thread_id in data.updates if db.get(thread_path(thread_id)) is None]
    if missing:
        raise HTTPException(status_code=404, detail=f"Thread not found: {', '.join(sorted(missing))}")
    db.update({f"{thread_path(thread_id)}/sortOrder": order for thread_id, order in data.updates.items()})
    return {"success": True}


def toggle_subscription(body: dict) -> dict:
    data = parse_payload(SubscriptionToggle, body)
    thread = get_thread_or_404(data.thread_id)
    user_id = derive_user_id(data.user_email)
    subscribers = thread.get("subscribers")
    if isinstance(subscribers, list):
        # Rewrite a legacy email array as a keyed set in the same write
        members = key_set(subscribers)
        members.symmetric_difference_update({user_id})
        get_db().update({f"{thread_path(data.thread_id)}/subscribers": {uid: True for uid in members} or None})
        return {"isSubscribed": user_id in members}
    is_subscribed = user_id not in key_set(subscribers)
    get_db().update({thread_subscriber_path(data.thread_id, user_id): True if is_subscribed else None})
    return {"isSubscribed": is_subscribed}


GET_ACTIONS = {
    "get-threads": get_threads,
    "get-thread": get_thread,
}

POST_ACTIONS = {
    "create-thread": create_thread,
    "update-thread": update_thread,
    "delete-thread": delete_thread,
    "update-sort-order": update_sort_order,
    "toggle-subscription": toggle_subscription,
}


@router.api_route("/forum", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def forum(request: Request, action: Optional[str] = Query(None)):
    return await dispatch_action(request, action, GET_ACTIONS, POST_ACTIONS, "forum")
