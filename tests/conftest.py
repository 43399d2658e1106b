"""Shared fixtures: an in-memory MongoDB stand-in, settings and HTTP mocks."""

import copy
import hashlib
import hmac
import json
import uuid
from types import SimpleNamespace
from typing import Any, Callable, Dict, List
from unittest.mock import AsyncMock

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from codehost_sync.core.config import Settings
from codehost_sync.services.rate_limit_service import RateLimitService, RetryOptions

_MISSING = object()


def _resolve(doc: Dict[str, Any], path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return _MISSING
    return value


def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, expected in query.items():
        value = _resolve(doc, key)
        if value is _MISSING:
            if expected is not None:
                return False
        elif isinstance(value, list) and not isinstance(expected, list):
            if expected not in value:
                return False
        elif value != expected:
            return False
    return True


def _set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = copy.deepcopy(value)


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = docs
        self._skip = 0
        self._limit = 0

    def skip(self, count: int) -> "FakeCursor":
        self._skip = count
        return self

    def limit(self, count: int) -> "FakeCursor":
        self._limit = count
        return self

    def __aiter__(self):
        docs = self._docs[self._skip:]
        if self._limit:
            docs = docs[:self._limit]
        return self._iterate(docs)

    async def _iterate(self, docs):
        for doc in docs:
            yield copy.deepcopy(doc)


class FakeCollection:
    """Just enough of motor's collection API for the services under test."""

    def __init__(self, name: str):
        self.name = name
        self.documents: List[Dict[str, Any]] = []
        self.indexes: List[Any] = []

    def _first(self, query: Dict[str, Any]):
        for doc in self.documents:
            if _matches(doc, query):
                return doc
        return None

    async def find_one(self, query: Dict[str, Any]):
        doc = self._first(query)
        return copy.deepcopy(doc) if doc is not None else None

    def find(self, query: Dict[str, Any] = None) -> FakeCursor:
        return FakeCursor([doc for doc in self.documents if _matches(doc, query or {})])

    async def insert_one(self, doc: Dict[str, Any]):
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", str(uuid.uuid4()))
        self.documents.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False):
        doc = self._first(query)
        upserted_id = None
        if doc is None:
            if not upsert:
                return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)
            doc = {k: copy.deepcopy(v) for k, v in query.items() if "." not in k}
            doc.setdefault("_id", str(uuid.uuid4()))
            for path, value in update.get("$setOnInsert", {}).items():
                _set_path(doc, path, value)
            self.documents.append(doc)
            upserted_id = doc["_id"]

        for path, value in update.get("$set", {}).items():
            _set_path(doc, path, value)

        return SimpleNamespace(
            matched_count=0 if upserted_id else 1,
            modified_count=0 if upserted_id else 1,
            upserted_id=upserted_id,
        )

    async def replace_one(self, query: Dict[str, Any], replacement: Dict[str, Any], upsert: bool = False):
        for index, doc in enumerate(self.documents):
            if _matches(doc, query):
                self.documents[index] = copy.deepcopy(replacement)
                return SimpleNamespace(matched_count=1, upserted_id=None)
        if upsert:
            self.documents.append(copy.deepcopy(replacement))
            return SimpleNamespace(matched_count=0, upserted_id=replacement.get("_id"))
        return SimpleNamespace(matched_count=0, upserted_id=None)

    async def create_index(self, keys, **kwargs):
        self.indexes.append((keys, kwargs))
        return "index"


class FakeDatabase:
    """Drop-in for ``codehost_sync.core.database.Database``."""

    client = None

    def __init__(self):
        self.collections: Dict[str, FakeCollection] = {}

    def get_collection(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture(scope="session")
def rsa_private_key_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def settings(rsa_private_key_pem) -> Settings:
    return Settings(
        _env_file=None,
        encryption_key="test-encryption-key",
        api_base_url="https://sync.example.com",
        github_client_id="gh-client",
        github_client_secret="gh-secret",
        slack_client_id="slack-client",
        slack_client_secret="slack-secret",
        github_app_id="12345",
        github_app_private_key=rsa_private_key_pem,
        github_app_webhook_secret="webhook-secret",
        github_app_slug="codehost-sync-test",
        github_api_base_url="https://api.github.test",
        sync_max_pages=5,
        log_format="text",
    )


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def rate_limit_service(no_sleep) -> RateLimitService:
    return RateLimitService(
        RetryOptions(max_retries=3, initial_delay=1.0, max_delay=30.0),
        sleep=no_sleep,
    )


def make_http_client(handler: Callable[[httpx.Request], Any]) -> httpx.AsyncClient:
    """An AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def sign_github_payload(payload: Dict[str, Any], secret: str = "webhook-secret"):
    """Serialized body and its ``X-Hub-Signature-256`` value."""
    body = json.dumps(payload).encode()
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return body, f"sha256={digest}"
