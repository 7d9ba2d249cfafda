# Schemas package
from .shared import AuthorIn, UserOut
from .threads import ThreadCreate, ThreadUpdate, ThreadDelete, SortOrderUpdate, SubscriptionToggle, ThreadsQuery, ThreadQuery, ThreadResponse
from .posts import PostsQuery, PostCreate, PostUpdate, PostAction, PostLikeRequest, PostResponse
