import base64
import os

os.environ["FORUM_SECRET"] = "test-secret"
os.environ["ALLOWED_ORIGINS"] = "https://lms.example.com,https://admin.example.com"
os.environ["FORUM_STORE"] = "memory"

import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from fastapi.testclient import TestClient

from database import MemoryStore, set_db
from encryption import evp_bytes_to_key
from main import app

ORIGIN = "https://lms.example.com"
ALICE = {"name": "Alice", "email": "alice@example.com"}
BOB = {"name": "Bob", "email": "bob@example.com"}


def cryptojs_encrypt(text: str, secret: str, salt: bytes = b"saltsalt") -> str:
    """Encrypt like CryptoJS.AES.encrypt(text, passphrase) did for older records."""
    key_iv = evp_bytes_to_key(secret.encode(), salt, 48)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(text.encode()) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key_iv[:32]), modes.CBC(key_iv[32:])).encryptor()
    body = encryptor.update(padded) + encryptor.finalize()
    return base64.b64encode(b"Salted__" + salt + body).decode()


@pytest.fixture
def store():
    s = set_db(MemoryStore())
    yield s
    set_db(None)


@pytest.fixture
def client(store):
    with TestClient(app, headers={"Origin": ORIGIN}) as c:
        yield c


@pytest.fixture
def make_thread(client):
    def _make(title="Intro", author=ALICE, forum_id="g1"):
        res = client.post("/forum?action=create-thread", json={"title": title, "author": author, "forumId": forum_id})
        assert res.status_code == 200, res.text
        return res.json()["id"]
    return _make


@pytest.fixture
def make_post(client):
    def _make(thread_id, content="hello", parent_id=None, author=ALICE):
        res = client.post("/posts?action=create-post", json={
            "threadId": thread_id, "parentId": parent_id, "content": content, "author": author,
        })
        assert res.status_code == 200, res.text
        return res.json()["id"]
    return _make
