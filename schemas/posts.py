from pydantic import validator
from typing import List, Optional, Union

import config
from schemas.shared import AuthorIn, CamelModel, UserOut, require_key, require_text


def validate_content_text(v):
    v = require_text(v, 'content')
    if len(v) > config.MAX_CONTENT_LENGTH:
        raise ValueError(f'content must be at most {config.MAX_CONTENT_LENGTH} characters long')
    return v


class PostsQuery(CamelModel):
    thread_id: str
    current_user: Optional[str] = None

    @validator('thread_id')
    def validate_thread_id(cls, v):
        return require_key(v, 'threadId')


class PostCreate(CamelModel):
    thread_id: str
    parent_id: Optional[str] = None
    content: str
    author: Union[AuthorIn, str]

    @validator('thread_id')
    def validate_thread_id(cls, v):
        return require_key(v, 'threadId')

    @validator('parent_id')
    def validate_parent_id(cls, v):
        # An empty string from a form means "top level"
        if v is None or not v.strip():
            return None
        return require_key(v, 'parentId')

    @validator('content')
    def validate_content(cls, v):
        return validate_content_text(v)


class PostUpdate(CamelModel):
    post_id: str
    content: str

    @validator('post_id')
    def validate_post_id(cls, v):
        return require_key(v, 'postId')

    @validator('content')
    def validate_content(cls, v):
        return validate_content_text(v)


class PostAction(CamelModel):
    post_id: str

    @validator('post_id')
    def validate_post_id(cls, v):
        return require_key(v, 'postId')


class PostLikeRequest(CamelModel):
    post_id: str
    user_email: str

    @validator('post_id')
    def validate_post_id(cls, v):
        return require_key(v, 'postId')

    @validator('user_email')
    def validate_user_email(cls, v):
        return require_text(v, 'userEmail')


class PostResponse(CamelModel):
    id: str
    thread_id: Optional[str] = None
    parent_id: Optional[str] = None
    content: str
    author: UserOut
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
    likes: int = 0
    liked_by: List[str] = []
    is_liked: bool = False
    deleted: bool = False
    deleted_at: Optional[int] = None
    replies: Optional[List['PostResponse']] = None


PostResponse.model_rebuild()
