import requests
from typing import Dict, Optional, Union


class ForumClientError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class ForumClient:
    """Thin wrapper over the forum and posts endpoints.

    Args:
        base_url: API root, e.g. ``https://forum.example.com``
        origin: Origin header to send; the API rejects unknown origins
        session: anything with ``get``/``post`` like ``requests.Session``
    """

    def __init__(self, base_url: str, origin: Optional[str] = None, session=None, timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self.headers = {"Origin": origin} if origin else {}

    def _get(self, endpoint: str, action: str, **params):
        params = {k: v for k, v in params.items() if v is not None}
        params["action"] = action
        response = self.session.get(f"{self.base_url}/{endpoint}", params=params, headers=self.headers, timeout=self.timeout)
        return self._handle(response)

    def _post(self, endpoint: str, action: str, payload: dict):
        response = self.session.post(
            f"{self.base_url}/{endpoint}",
            params={"action": action},
            json=payload,
            headers=self.headers,
            timeout=self.timeout,
        )
        return self._handle(response)

    @staticmethod
    def _handle(response):
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            detail = body.get("detail", "") if isinstance(body, dict) else response.text
            raise ForumClientError(response.status_code, str(detail))
        return response.json()

    # Threads

    def get_threads(self, forum_id: str, current_user: Optional[str] = None):
        return self._get("forum", "get-threads", groupId=forum_id, currentUser=current_user)

    def get_thread(self, thread_id: str, current_user: Optional[str] = None):
        return self._get("forum", "get-thread", threadId=thread_id, currentUser=current_user)

    def create_thread(self, title: str, author: Union[dict, str], forum_id: str) -> str:
        return self._post("forum", "create-thread", {"title": title, "author": author, "forumId": forum_id})["id"]

    def update_thread(self, thread_id: str, title: Optional[str] = None, read_only: Optional[bool] = None, forum_id: Optional[str] = None):
        payload = {"id": thread_id, "title": title, "readOnly": read_only, "forumId": forum_id}
        return self._post("forum", "update-thread", {k: v for k, v in payload.items() if v is not None})

    def delete_thread(self, thread_id: str):
        return self._post("forum", "delete-thread", {"id": thread_id})

    def update_sort_order(self, updates: Dict[str, float]):
        return self._post("forum", "update-sort-order", {"updates": updates})

    def toggle_subscription(self, thread_id: str, user_email: str) -> bool:
        return self._post("forum", "toggle-subscription", {"threadId": thread_id, "userEmail": user_email})["isSubscribed"]

    # Posts

    def get_posts(self, thread_id: str, current_user: Optional[str] = None):
        return self._get("posts", "get-posts", threadId=thread_id, currentUser=current_user)

    def get_post_tree(self, thread_id: str):
        return self._get("posts", "get-post-tree", threadId=thread_id)

    def get_all_posts(self):
        return self._get("posts", "get-all-posts")

    def create_post(self, thread_id: str, content: str, author: Union[dict, str], parent_id: Optional[str] = None) -> str:
        payload = {"threadId": thread_id, "parentId": parent_id, "content": content, "author": author}
        return self._post("posts", "create-post", payload)["id"]

    def update_post(self, post_id: str, content: str):
        return self._post("posts", "update-post", {"postId": post_id, "content": content})

    def like_post(self, post_id: str, user_email: str):
        return self._post("posts", "like-post", {"postId": post_id, "userEmail": user_email})

    def soft_delete_post(self, post_id: str):
        return self._post("posts", "soft-delete-post", {"postId": post_id})

    def restore_post(self, post_id: str):
        return self._post("posts", "restore-post", {"postId": post_id})

    def admin_delete_post(self, post_id: str):
        return self._post("posts", "admin-delete-post", {"postId": post_id})
