# Store layout definitions
#
# The realtime database has no DDL. These constants and builders are the single
# source of truth for where each record and denormalised index lives.

THREADS = "threads"
POSTS = "posts"
USERS = "users"
FORUMS = "forums"

# Characters the realtime database refuses in a key
FORBIDDEN_KEY_CHARS = set(".$#[]/")

DELETED_PLACEHOLDER = "[deleted]"


def thread_path(thread_id: str) -> str:
    return f"{THREADS}/{thread_id}"


def thread_post_index_path(thread_id: str, post_id: str) -> str:
    return f"{THREADS}/{thread_id}/postIds/{post_id}"


def thread_subscriber_path(thread_id: str, user_id: str) -> str:
    return f"{THREADS}/{thread_id}/subscribers/{user_id}"


def post_path(post_id: str) -> str:
    return f"{POSTS}/{post_id}"


def post_liker_path(post_id: str, user_id: str) -> str:
    return f"{POSTS}/{post_id}/likedBy/{user_id}"


def user_path(user_id: str) -> str:
    return f"{USERS}/{user_id}"


def forum_thread_index_path(forum_id: str, thread_id: str) -> str:
    return f"{FORUMS}/{forum_id}/threadIds/{thread_id}"


def is_valid_key(key) -> bool:
    """True when ``key`` can be used as a single path segment."""
    return isinstance(key, str) and bool(key) and not (set(key) & FORBIDDEN_KEY_CHARS)
