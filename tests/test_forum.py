import json

import pytest
from pydantic import ValidationError

from encryption import derive_user_id
from schemas import SortOrderUpdate
from conftest import ALICE, BOB


def get_threads(client, forum_id="g1", **params):
    res = client.get("/forum", params={"action": "get-threads", "groupId": forum_id, **params})
    assert res.status_code == 200, res.text
    return res.json()


def test_created_thread_is_listed_in_its_forum(client, make_thread):
    res = client.post("/forum?action=create-thread", json={"title": "Intro", "author": ALICE, "forumId": "g1"})
    assert res.status_code == 200
    thread_id = res.json()["id"]

    threads = get_threads(client, "g1")
    assert [(t["id"], t["title"]) for t in threads] == [(thread_id, "Intro")]
    thread = threads[0]
    assert thread["author"]["name"] == "Alice"
    assert thread["author"]["email"] == "alice@example.com"
    assert thread["forumId"] == "g1"
    assert thread["readOnly"] is False
    assert thread["isSubscribed"] is False
    assert thread["sortOrder"] == thread["createdAt"]
    assert get_threads(client, "g2") == []


def test_create_thread_writes_index_and_user(client, store, make_thread):
    thread_id = make_thread(forum_id="g1")
    user_id = derive_user_id(ALICE["email"])
    assert store.get(f"forums/g1/threadIds/{thread_id}") is True
    assert store.get(f"threads/{thread_id}/authorId") == user_id
    blob = store.get(f"users/{user_id}")
    assert "alice" not in blob

    # The user record is written once and left alone afterwards
    make_thread(title="Second", author={"name": "Alice Renamed", "email": "alice@example.com"})
    assert store.get(f"users/{user_id}") == blob


def test_create_thread_accepts_group_id(client):
    res = client.post("/forum?action=create-thread", json={"title": "Legacy", "author": ALICE, "groupId": "g7"})
    assert res.status_code == 200
    assert [t["title"] for t in get_threads(client, "g7")] == ["Legacy"]
    res = client.get("/forum", params={"action": "get-threads", "forumId": "g7"})
    assert len(res.json()) == 1


def test_create_thread_requires_fields(client):
    res = client.post("/forum?action=create-thread", json={"title": "No author", "forumId": "g1"})
    assert res.status_code == 400
    assert "author" in res.json()["detail"]
    res = client.post("/forum?action=create-thread", json={"title": "   ", "author": ALICE, "forumId": "g1"})
    assert res.status_code == 400
    res = client.post("/forum?action=create-thread", json={"title": "Bad forum", "author": ALICE, "forumId": "a/b"})
    assert res.status_code == 400


def test_json_encoded_author(client, make_thread):
    make_thread(author=json.dumps(BOB))
    assert get_threads(client)[0]["author"]["name"] == "Bob"


def test_malformed_author_falls_back_to_placeholder(client, store, make_thread):
    thread_id = make_thread(author="{not json")
    thread = get_threads(client)[0]
    assert thread["id"] == thread_id
    assert thread["author"] == {"id": None, "name": "", "email": ""}
    assert store.get("users") is None


def test_get_thread(client, make_thread):
    thread_id = make_thread()
    res = client.get("/forum", params={"action": "get-thread", "threadId": thread_id})
    assert res.status_code == 200
    assert res.json()["title"] == "Intro"
    res = client.get("/forum", params={"action": "get-thread", "threadId": "nope"})
    assert res.status_code == 404
    res = client.get("/forum", params={"action": "get-thread"})
    assert res.status_code == 400


def test_update_thread_title_and_read_only(client, store, make_thread):
    thread_id = make_thread()
    res = client.post("/forum?action=update-thread", json={"id": thread_id, "title": "Renamed", "readOnly": True})
    assert res.json() == {"success": True}
    thread = get_threads(client)[0]
    assert thread["title"] == "Renamed"
    assert thread["readOnly"] is True
    assert thread["updatedAt"] is not None


def test_update_thread_errors(client, make_thread):
    thread_id = make_thread()
    assert client.post("/forum?action=update-thread", json={"id": thread_id}).status_code == 400
    assert client.post("/forum?action=update-thread", json={"title": "x"}).status_code == 400
    assert client.post("/forum?action=update-thread", json={"id": "missing", "title": "x"}).status_code == 404


def test_moving_thread_moves_forum_index(client, store, make_thread):
    thread_id = make_thread(forum_id="g1")
    res = client.post("/forum?action=update-thread", json={"id": thread_id, "forumId": "g2"})
    assert res.status_code == 200
    assert store.get(f"forums/g1/threadIds/{thread_id}") is None
    assert store.get(f"forums/g2/threadIds/{thread_id}") is True
    assert get_threads(client, "g1") == []
    assert [t["id"] for t in get_threads(client, "g2")] == [thread_id]
    assert get_threads(client, "g2")[0]["forumId"] == "g2"


def test_delete_thread_cascades(client, store, make_thread, make_post):
    thread_id = make_thread(forum_id="g1")
    keep_id = make_thread(title="Keep", forum_id="g1")
    root = make_post(thread_id)
    reply = make_post(thread_id, parent_id=root)
    kept_post = make_post(keep_id)

    res = client.post("/forum?action=delete-thread", json={"id": thread_id})
    assert res.status_code == 200
    assert res.json()["success"] is True
    assert sorted(res.json()["deleted"]) == sorted([root, reply])

    assert store.get(f"threads/{thread_id}") is None
    assert store.get(f"forums/g1/threadIds/{thread_id}") is None
    assert store.get(f"posts/{root}") is None
    assert store.get(f"posts/{reply}") is None
    assert store.get(f"posts/{kept_post}") is not None
    assert [t["id"] for t in get_threads(client, "g1")] == [keep_id]

    assert client.post("/forum?action=delete-thread", json={"id": thread_id}).status_code == 404


def test_update_sort_order(client, store, make_thread):
    first = make_thread(title="First")
    second = make_thread(title="Second")
    res = client.post("/forum?action=update-sort-order", json={"updates": {first: 2, second: 1}})
    assert res.json() == {"success": True}
    assert [t["title"] for t in get_threads(client)] == ["Second", "First"]
    assert store.get(f"threads/{first}/sortOrder") == 2


def test_update_sort_order_rejects_bad_input(client, store, make_thread):
    thread_id = make_thread()
    assert client.post("/forum?action=update-sort-order", json={"updates": {}}).status_code == 400
    assert client.post("/forum?action=update-sort-order", json={"updates": "nope"}).status_code == 400
    assert client.post("/forum?action=update-sort-order", json={}).status_code == 400
    res = client.post("/forum?action=update-sort-order", json={"updates": {thread_id: 5, "ghost": 1}})
    assert res.status_code == 404
    assert store.get("threads/ghost") is None
    assert store.get(f"threads/{thread_id}/sortOrder") != 5


def test_toggle_subscription(client, make_thread):
    thread_id = make_thread()
    body = {"threadId": thread_id, "userEmail": BOB["email"]}
    assert client.post("/forum?action=toggle-subscription", json=body).json() == {"isSubscribed": True}

    res = client.get("/forum", params={"action": "get-thread", "threadId": thread_id, "currentUser": BOB["email"]})
    thread = res.json()
    assert thread["isSubscribed"] is True
    assert [s["id"] for s in thread["subscribers"]] == [derive_user_id(BOB["email"])]
    assert get_threads(client, currentUser=ALICE["email"])[0]["isSubscribed"] is False

    assert client.post("/forum?action=toggle-subscription", json=body).json() == {"isSubscribed": False}
    assert get_threads(client, currentUser=BOB["email"])[0]["subscribers"] == []


def test_toggle_subscription_errors(client):
    res = client.post("/forum?action=toggle-subscription", json={"threadId": "missing", "userEmail": "a@x.com"})
    assert res.status_code == 404
    res = client.post("/forum?action=toggle-subscription", json={"threadId": "missing"})
    assert res.status_code == 400


def test_toggle_subscription_rewrites_legacy_email_list(client, store):
    store.update({
        "threads/legacy": {"title": "Old", "forumId": "g1", "subscribers": ["a@x.com"]},
        "forums/g1/threadIds/legacy": True,
    })
    res = client.post("/forum?action=toggle-subscription", json={"threadId": "legacy", "userEmail": "b@x.com"})
    assert res.json() == {"isSubscribed": True}
    assert store.get("threads/legacy/subscribers") == {derive_user_id("a@x.com"): True, derive_user_id("b@x.com"): True}


def test_action_and_method_checks(client):
    assert client.get("/forum", params={"action": "create-thread"}).status_code == 405
    assert client.post("/forum?action=get-threads", json={}).status_code == 405
    assert client.put("/forum?action=create-thread", json={}).status_code == 405
    assert client.get("/forum", params={"action": "explode"}).status_code == 400
    assert client.get("/forum").status_code == 400


def test_update_sort_order_rejects_non_finite_numbers(client, store, make_thread):
    thread_id = make_thread()
    before = store.get(f"threads/{thread_id}/sortOrder")
    for literal in ("NaN", "Infinity", "-Infinity"):
        res = client.post(
            "/forum?action=update-sort-order",
            content=f'{{"updates": {{"{thread_id}": {literal}}}}}'.encode(),
            headers={"Content-Type": "application/json"},
        )
        assert res.status_code == 400
    assert store.get(f"threads/{thread_id}/sortOrder") == before
    assert len(get_threads(client)) == 1


def test_sort_order_model_rejects_non_finite_numbers():
    with pytest.raises(ValidationError):
        SortOrderUpdate.model_validate({"updates": {"t1": float("nan")}})
    with pytest.raises(ValidationError):
        SortOrderUpdate.model_validate({"updates": {"t1": float("inf")}})


def test_stored_non_finite_sort_order_falls_back_to_created_at(client, store):
    store.update({
        "threads/t1": {"title": "Odd", "forumId": "g1", "createdAt": 5, "sortOrder": float("nan")},
        "forums/g1/threadIds/t1": True,
    })
    assert get_threads(client)[0]["sortOrder"] == 5


def test_update_sort_order_strips_thread_ids(client, store, make_thread):
    thread_id = make_thread()
    res = client.post("/forum?action=update-sort-order", json={"updates": {f" {thread_id} ": 7}})
    assert res.status_code == 200
    assert store.get(f"threads/{thread_id}/sortOrder") == 7
    res = client.post("/forum?action=update-sort-order", json={"updates": {thread_id: 1, f" {thread_id}": 2}})
    assert res.status_code == 400
