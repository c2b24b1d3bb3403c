"""Shared test fixtures."""

from __future__ import annotations

import json
import re
from collections.abc import Generator
from urllib.parse import parse_qs, urlparse

import pytest
import responses

from services.contacts import ContactService
from services.systeme import SystemeGateway

SYSTEME_BASE = "https://systeme.test"
TEST_API_KEY = "test-api-key"


def query_of(url: str) -> dict[str, str]:
    """Return the single-valued query parameters of *url*."""
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Record sleeps instead of waiting."""
    slept: list[float] = []
    monkeypatch.setattr("services.systeme.time.sleep", slept.append)
    monkeypatch.setattr("services.contacts.time.sleep", slept.append)
    return slept


@pytest.fixture
def gateway() -> SystemeGateway:
    """Gateway pinned to the test host with no transient retries."""
    return SystemeGateway(
        api_key=TEST_API_KEY,
        base_url=SYSTEME_BASE,
        timeout=5,
        max_retries=0,
        retry_delay=0.0,
    )


@pytest.fixture
def contacts(gateway: SystemeGateway) -> ContactService:
    return ContactService(gateway, poll_attempts=3, poll_delay=0.5)


class FakeSysteme:
    """In-memory Systeme answering on the ``/api`` routes only."""

    def __init__(self, mock: responses.RequestsMock, base: str = SYSTEME_BASE) -> None:
        self.mock = mock
        self.base = base
        self.contacts: dict[str, int] = {}
        self.tags: list[dict] = []
        self.contact_tags: dict[int, set[int]] = {}
        self.attach_calls = 0
        self.reject_unknown_tags = False
        self._next_id = 100

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def add_tag(self, name: str) -> int:
        tag_id = self._new_id()
        self.tags.append({"id": tag_id, "name": name})
        return tag_id

    # -- callbacks ---------------------------------------------------------

    def _search_contacts(self, request):
        email = query_of(request.url).get("email", "").lower()
        items = [
            {"id": cid, "email": addr}
            for addr, cid in self.contacts.items()
            if addr.lower() == email
        ]
        return 200, {}, json.dumps({"items": items, "hasMore": False})

    def _create_contact(self, request):
        body = json.loads(request.body)
        email = body["email"]
        if email.lower() in (addr.lower() for addr in self.contacts):
            return 422, {}, json.dumps({"detail": "email: This value is already used."})
        contact_id = self._new_id()
        self.contacts[email] = contact_id
        return 201, {}, json.dumps({"id": contact_id, "email": email})

    def _list_tags(self, request):
        return 200, {}, json.dumps({"items": self.tags, "hasMore": False})

    def _create_tag(self, request):
        name = json.loads(request.body)["name"]
        return 201, {}, json.dumps({"id": self.add_tag(name), "name": name})

    def _attach_tag(self, request):
        self.attach_calls += 1
        contact_id = int(request.url.rstrip("/").split("/")[-2])
        body = json.loads(request.body)
        tag_id = body.get("tagId", body.get("tag_id"))
        if self.reject_unknown_tags and tag_id not in {t["id"] for t in self.tags}:
            return 400, {}, json.dumps({"detail": "Tag not found"})
        self.contact_tags.setdefault(contact_id, set()).add(tag_id)
        return 204, {}, ""

    def register(self) -> None:
        api = self.base + "/api"
        self.mock.add_callback(responses.GET, api + "/contacts", callback=self._search_contacts)
        self.mock.add_callback(responses.POST, api + "/contacts", callback=self._create_contact)
        self.mock.add_callback(responses.GET, api + "/tags", callback=self._list_tags)
        self.mock.add_callback(responses.POST, api + "/tags", callback=self._create_tag)
        self.mock.add_callback(
            responses.POST,
            re.compile(re.escape(api) + r"/contacts/\d+/tags"),
            callback=self._attach_tag,
        )


@pytest.fixture
def rsps() -> Generator[responses.RequestsMock, None, None]:
    """Active responses mock scoped to one test."""
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


@pytest.fixture
def fake_systeme(rsps: responses.RequestsMock) -> FakeSysteme:
    fake = FakeSysteme(rsps)
    fake.register()
    return fake
