import json
import logging
import time
from typing import Optional, Tuple

import bleach
from fastapi import HTTPException, Request
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from database import get_db
from database_schemas import post_path, thread_path, user_path
from encryption import decrypt_user, derive_user_id, encrypt_user, get_cipher, is_legacy_blob
from schemas import AuthorIn, UserOut

logger = logging.getLogger(__name__)

# Empty author used when the client sends an author that cannot be parsed
PLACEHOLDER_AUTHOR = {"name": "", "email": ""}

ALLOWED_TAGS = {
    "a", "b", "blockquote", "br", "code", "em", "i", "li", "ol", "p", "pre",
    "s", "strong", "u", "ul", "h1", "h2", "h3", "span",
}
ALLOWED_ATTRIBUTES = {"a": ["href", "title", "target", "rel"]}


def now_ms() -> int:
    return int(time.time() * 1000)


def sanitize_content(text: str) -> str:
    """Strip markup outside the allow-list before content is stored."""
    return bleach.clean(text, tags=ALLOWED_TAGS, attributes=ALLOWED_ATTRIBUTES, strip=True)


def parse_payload(model, data: dict):
    """Validate ``data`` with ``model``; any problem is a 400 with a readable message."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        missing = []
        problems = []
        for err in e.errors():
            loc = ".".join(str(part) for part in err["loc"])
            if err["type"] == "missing":
                missing.append(loc)
            else:
                problems.append(f"{loc}: {err['msg']}" if loc else err["msg"])
        if missing:
            detail = f"Missing required fields: {', '.join(missing)}"
        else:
            detail = "; ".join(problems) or "Invalid request"
        raise HTTPException(status_code=400, detail=detail)


def _reject_constant(name):
    raise ValueError(f"{name} is not valid JSON")


async def read_json_body(request: Request) -> dict:
    raw = await request.body()
    if not raw:
        return {}
    try:
        # NaN and Infinity cannot be stored or sent back out
        body = json.loads(raw, parse_constant=_reject_constant)
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return body


async def dispatch_action(request: Request, action: Optional[str], get_actions: dict, post_actions: dict, api_name: str):
    """Route ``?action=`` to a handler, enforcing method, and hide unexpected failures behind a 500."""
    if request.method == "GET":
        handler = get_actions.get(action)
        if handler is None and action in post_actions:
            raise HTTPException(status_code=405, detail="Method Not Allowed")
        payload = dict(request.query_params)
        payload.pop("action", None)
    elif request.method == "POST":
        handler = post_actions.get(action)
        if handler is None and action in get_actions:
            raise HTTPException(status_code=405, detail="Method Not Allowed")
        payload = await read_json_body(request)
    else:
        raise HTTPException(status_code=405, detail="Method Not Allowed")

    if handler is None:
        raise HTTPException(status_code=400, detail="Unknown action" if action else "Missing action")

    try:
        return await run_in_threadpool(handler, payload)
    except HTTPException:
        raise
    except Exception:
        logger.exception("[%s API] Error in %s", api_name, action)
        raise HTTPException(status_code=500, detail="Internal Server Error")


def get_thread_or_404(thread_id: str) -> dict:
    thread = get_db().get(thread_path(thread_id))
    if not isinstance(thread, dict):
        raise HTTPException(status_code=404, detail="Thread not found")
    return thread


def get_post_or_404(post_id: str) -> dict:
    post = get_db().get(post_path(post_id))
    if not isinstance(post, dict):
        raise HTTPException(status_code=404, detail="Post not found")
    return post


def key_set(value) -> set:
    """Members of a ``{key: true}`` map. Legacy arrays of emails are mapped to user ids."""
    if isinstance(value, dict):
        return {k for k, v in value.items() if v}
    if isinstance(value, list):
        return {derive_user_id(v) if "@" in v else v for v in value if isinstance(v, str) and v}
    return set()


def parse_author(author) -> dict:
    """Normalise a request author (object or JSON string) to ``{name, email}``.

    A malformed JSON string is a data-quality problem on the client side, not
    a reason to reject the request: it becomes the empty placeholder.
    """
    if isinstance(author, AuthorIn):
        return {"name": author.name, "email": author.email}
    if isinstance(author, dict):
        return {"name": str(author.get("name") or ""), "email": str(author.get("email") or "")}
    if isinstance(author, str):
        try:
            data = json.loads(author)
        except ValueError:
            logger.warning("Malformed author JSON, using placeholder")
            return dict(PLACEHOLDER_AUTHOR)
        if isinstance(data, dict):
            return {"name": str(data.get("name") or ""), "email": str(data.get("email") or "")}
        logger.warning("Author JSON is not an object, using placeholder")
    return dict(PLACEHOLDER_AUTHOR)


def author_updates(author: dict) -> Tuple[Optional[str], dict]:
    """Derive the author's user id and the writes needed to record the user.

    User records are written once per id and never overwritten. An author
    without an email has no id.
    """
    if not author.get("email"):
        return None, {}
    user_id = derive_user_id(author["email"])
    if get_db().get(user_path(user_id)) is not None:
        return user_id, {}
    return user_id, {user_path(user_id): encrypt_user(author)}


class UserResolver:
    """Resolves user ids and legacy embedded authors to ``UserOut``, caching per request."""

    def __init__(self):
        self._cache = {}

    def by_id(self, user_id: Optional[str]) -> UserOut:
        if not user_id:
            return UserOut(**PLACEHOLDER_AUTHOR)
        if user_id not in self._cache:
            blob = get_db().get(user_path(user_id))
            if blob is None:
                user = {"name": "", "email": ""}
            else:
                user = decrypt_user(blob)
            self._cache[user_id] = UserOut(id=user_id, **user)
        return self._cache[user_id]

    def for_record(self, record: dict) -> UserOut:
        """Author of a thread or post, whichever schema revision wrote it."""
        if record.get("authorId"):
            return self.by_id(record["authorId"])
        return self.embedded(record.get("author"))

    def embedded(self, author) -> UserOut:
        user = legacy_author(author)
        user_id = derive_user_id(user["email"]) if user["email"] else None
        return UserOut(id=user_id, **user)


def legacy_author(value) -> dict:
    """``{name, email}`` from an author embedded by an older schema revision.

    Handles objects, JSON strings, Fernet and CryptoJS blobs, and bare names.
    """
    if isinstance(value, str) and is_legacy_blob(value):
        value = get_cipher().decrypt_legacy_text(value)
    elif isinstance(value, str) and value.startswith("gAAAAA"):
        return decrypt_user(value)
    elif isinstance(value, str) and value and not value.lstrip().startswith("{"):
        return {"name": value, "email": ""}
    return parse_author(value)
