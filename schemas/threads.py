import math

from pydantic import AliasChoices, Field, validator
from typing import Dict, List, Optional, Union

import config
from schemas.shared import AuthorIn, CamelModel, UserOut, require_key, require_text

# Older clients still send groupId
FORUM_ID_ALIASES = AliasChoices('forumId', 'groupId')


class ThreadCreate(CamelModel):
    title: str
    author: Union[AuthorIn, str]
    forum_id: str = Field(..., validation_alias=FORUM_ID_ALIASES)

    @validator('title')
    def validate_title(cls, v):
        v = require_text(v, 'title')
        if len(v) > config.MAX_TITLE_LENGTH:
            raise ValueError(f'title must be at most {config.MAX_TITLE_LENGTH} characters long')
        return v

    @validator('forum_id')
    def validate_forum_id(cls, v):
        return require_key(v, 'forumId')


class ThreadUpdate(CamelModel):
    id: str
    title: Optional[str] = None
    read_only: Optional[bool] = None
    forum_id: Optional[str] = Field(None, validation_alias=FORUM_ID_ALIASES)

    @validator('id')
    def validate_id(cls, v):
        return require_key(v, 'id')

    @validator('title')
    def validate_title(cls, v):
        if v is None:
            return v
        v = require_text(v, 'title')
        if len(v) > config.MAX_TITLE_LENGTH:
            raise ValueError(f'title must be at most {config.MAX_TITLE_LENGTH} characters long')
        return v

    @validator('forum_id')
    def validate_forum_id(cls, v):
        return v if v is None else require_key(v, 'forumId')


class ThreadDelete(CamelModel):
    id: str

    @validator('id')
    def validate_id(cls, v):
        return require_key(v, 'id')


class SortOrderUpdate(CamelModel):
    updates: Dict[str, Union[int, float]]

    @validator('updates')
    def validate_updates(cls, v):
        if not v:
            raise ValueError('updates cannot be empty')
        updates = {}
        for thread_id, order in v.items():
            thread_id = require_key(thread_id, 'thread id')
            if thread_id in updates:
                raise ValueError(f'duplicate thread id {thread_id}')
            if not math.isfinite(order):
                raise ValueError(f'sort order for {thread_id} must be a finite number')
            updates[thread_id] = order
        return updates


class SubscriptionToggle(CamelModel):
    thread_id: str
    user_email: str

    @validator('thread_id')
    def validate_thread_id(cls, v):
        return require_key(v, 'threadId')

    @validator('user_email')
    def validate_user_email(cls, v):
        return require_text(v, 'userEmail')


class ThreadsQuery(CamelModel):
    forum_id: str = Field(..., validation_alias=FORUM_ID_ALIASES)
    current_user: Optional[str] = None

    @validator('forum_id')
    def validate_forum_id(cls, v):
        return require_key(v, 'forumId')


class ThreadQuery(CamelModel):
    thread_id: str
    current_user: Optional[str] = None

    @validator('thread_id')
    def validate_thread_id(cls, v):
        return require_key(v, 'threadId')


class ThreadResponse(CamelModel):
    id: str
    title: str
    author: UserOut
    forum_id: Optional[str] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
    sort_order: Optional[Union[int, float]] = None
    read_only: bool = False
    deleted: bool = False
    subscribers: List[UserOut] = []
    is_subscribed: bool = False
    post_count: int = 0
