# migrate.py
"""One-time migration of legacy forum records to the current schema.

Legacy revisions stored ``group``/``groupId`` instead of ``forumId``, embedded
authors (objects, JSON strings or encrypted blobs) instead of ``authorId``,
``likedBy``/``subscribers`` as arrays of emails, and post content as plaintext
or CryptoJS blobs. Everything is rewritten in a single root update. Authors
without an email have no user id and keep their embedded name.
"""
import argparse
import json
import logging

from database import get_db
from database_schemas import POSTS, THREADS, USERS, forum_thread_index_path, post_path, thread_path, user_path
from encryption import DECRYPTION_FAILED, encrypt_text, encrypt_user, get_cipher, is_legacy_blob
from utils.route_helpers import key_set, legacy_author

logger = logging.getLogger(__name__)


def migrate_content(value) -> str:
    if not isinstance(value, str) or not value:
        return value
    if value.startswith("gAAAAA"):
        return value
    if is_legacy_blob(value):
        plain = get_cipher().decrypt_legacy_text(value)
        if plain == DECRYPTION_FAILED:
            # Keep what we have rather than destroying unreadable content
            logger.warning("Could not decrypt legacy content, leaving it as is")
            return value
        return encrypt_text(plain)
    return encrypt_text(value)


def build_migration(root: dict) -> dict:
    """Return the root update turning ``root`` into the current schema."""
    threads = dict((root or {}).get(THREADS) or {})
    posts = dict((root or {}).get(POSTS) or {})
    existing_users = (root or {}).get(USERS) or {}
    cipher = get_cipher()
    users = {}
    forum_indexes = {}

    def author_id_for(record: dict):
        if record.get("authorId"):
            return record["authorId"]
        author = legacy_author(record.get("author"))
        if not author["email"]:
            return None
        user_id = cipher.derive_user_id(author["email"])
        if user_id not in existing_users:
            users.setdefault(user_id, author)
        return user_id

    migrated_posts = {}
    post_ids_by_thread = {}
    for post_id, post in posts.items():
        if not isinstance(post, dict):
            continue
        post = dict(post)
        post["authorId"] = author_id_for(post)
        if post["authorId"]:
            post.pop("author", None)
        liked_by = key_set(post.get("likedBy"))
        post["likedBy"] = {uid: True for uid in liked_by} or None
        post["likes"] = len(liked_by)
        post["content"] = migrate_content(post.get("content"))
        post["originalContent"] = migrate_content(post.get("originalContent"))
        post["deleted"] = bool(post.get("deleted", False))
        post["parentId"] = post.get("parentId") or None
        migrated_posts[post_id] = post
        if post.get("threadId"):
            post_ids_by_thread.setdefault(post["threadId"], set()).add(post_id)

    migrated_threads = {}
    for thread_id, thread in threads.items():
        if not isinstance(thread, dict):
            continue
        thread = dict(thread)
        forum_id = thread.get("forumId") or thread.get("groupId") or thread.get("group")
        thread.pop("groupId", None)
        thread.pop("group", None)
        thread["forumId"] = forum_id
        thread["authorId"] = author_id_for(thread)
        if thread["authorId"]:
            thread.pop("author", None)
        thread["subscribers"] = {uid: True for uid in key_set(thread.get("subscribers"))} or None
        post_ids = key_set(thread.get("postIds")) | post_ids_by_thread.get(thread_id, set())
        thread["postIds"] = {pid: True for pid in post_ids if pid in migrated_posts} or None
        thread.setdefault("sortOrder", thread.get("createdAt"))
        thread.setdefault("readOnly", False)
        thread.setdefault("deleted", False)
        migrated_threads[thread_id] = thread
        if forum_id:
            forum_indexes[forum_thread_index_path(forum_id, thread_id)] = True

    updates = {}
    for thread_id, thread in migrated_threads.items():
        updates[thread_path(thread_id)] = thread
    for post_id, post in migrated_posts.items():
        updates[post_path(post_id)] = post
    for user_id, author in users.items():
        updates[user_path(user_id)] = encrypt_user(author)
    updates.update(forum_indexes)
    return updates


def migrate(dry_run: bool = False) -> dict:
    db = get_db()
    root = {
        THREADS: db.get(THREADS),
        POSTS: db.get(POSTS),
        USERS: db.get(USERS),
    }
    updates = build_migration(root)
    logger.info(
        "Migration: %d threads, %d posts, %d new users",
        sum(1 for p in updates if p.startswith(f"{THREADS}/")),
        sum(1 for p in updates if p.startswith(f"{POSTS}/")),
        sum(1 for p in updates if p.startswith(f"{USERS}/")),
    )
    if not dry_run:
        db.update(updates)
    return updates


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Migrate legacy forum records to the current schema")
    parser.add_argument("--dry-run", action="store_true", help="print the planned paths without writing")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    planned = migrate(dry_run=args.dry_run)
    if args.dry_run:
        print(json.dumps(sorted(planned), indent=2))
    print("✅ Migration complete." if not args.dry_run else "Dry run: nothing written.")
