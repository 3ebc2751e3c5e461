"""Global test fixtures for the muttr test suite."""

from __future__ import annotations

import json
import uuid
from typing import Any
from urllib.parse import parse_qsl, urlsplit

import pytest

from muttr.core.config import clear_config_cache
from muttr.core.events import NotificationReceived
from muttr.directory.client import DirectoryClient, DirectoryConfig
from muttr.directory.models import InboxNotification, now_ms
from muttr.identity import KeyringIdentity, PublicKey, SignedMessage
from muttr.storage.dht import InMemoryDHT
from muttr.userid import sha1_hex

# ============================================================================
# Environment
# ============================================================================


@pytest.fixture(autouse=True)
def reset_config(monkeypatch):
    """Start every test from default settings."""
    for var in (
        "MUTTR_DHT_ADDRESS",
        "MUTTR_DHT_PORT",
        "MUTTR_DHT_FORWARD_PORT",
        "MUTTR_DHT_SEEDS",
        "MUTTR_POD_SCHEME",
        "MUTTR_REALTIME",
        "MUTTR_LOG_LEVEL",
        "MUTTR_LOG_FORMAT",
        "MUTTR_LOG_FILE",
    ):
        monkeypatch.delenv(var, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


# ============================================================================
# Identities
# ============================================================================


@pytest.fixture(scope="session")
def alice() -> KeyringIdentity:
    return KeyringIdentity.generate("alice@pod.example", "alice-passphrase")


@pytest.fixture(scope="session")
def bob() -> KeyringIdentity:
    return KeyringIdentity.generate("bob@pod.example", "bob-passphrase")


@pytest.fixture(scope="session")
def carol() -> KeyringIdentity:
    return KeyringIdentity.generate("carol@other.example", "carol-passphrase")


@pytest.fixture
def encrypted_message(alice, bob) -> tuple[str, str]:
    """A valid ``(key, value)`` pair for the content-addressed store."""
    value = alice.encrypt([bob.public_key_armored], alice.sign("stored body"))
    return sha1_hex(value), value


# ============================================================================
# DHT
# ============================================================================


class CountingDHT(InMemoryDHT):
    """In-memory DHT that counts calls."""

    def __init__(self, store: dict[str, str] | None = None) -> None:
        super().__init__(store)
        self.get_calls = 0
        self.put_calls = 0

    async def get(self, key: str) -> str:
        self.get_calls += 1
        return await super().get(key)

    async def put(self, key: str, value: str) -> bool:
        self.put_calls += 1
        return await super().put(key, value)


@pytest.fixture
def dht_store() -> dict[str, str]:
    return {}


@pytest.fixture
def counting_dht(dht_store) -> CountingDHT:
    return CountingDHT(dht_store)


@pytest.fixture
def counting_network(dht_store):
    """Network factory whose joined nodes are CountingDHTs over one store."""
    nodes: list[CountingDHT] = []

    async def join(address: str, port: int, seeds: list[tuple[str, int]]) -> CountingDHT:
        node = CountingDHT(dht_store)
        nodes.append(node)
        return node

    join.nodes = nodes
    return join


# ============================================================================
# Pods
# ============================================================================


class FakePod:
    """Recording stand-in for every pod reachable over HTTP.

    Serves the pod REST surface for any host, verifies signed payloads
    against registered keys, issues single-use tokens and queues inbox
    notifications. Subscribed sinks receive notifications as they arrive.
    """

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.keys_by_hash: dict[str, str] = {}
        self.aliases: dict[tuple[str, str], str] = {}
        self.tokens: dict[str, dict[str, str]] = {}
        self.issued_tokens: list[dict[str, str]] = []
        self.inboxes: dict[str, list[dict[str, Any]]] = {}
        self.messages: dict[str, str] = {}
        self.sinks: dict[str, Any] = {}
        self.last_fields: dict[str, str] | None = None

    def attach(self, client: DirectoryClient) -> DirectoryClient:
        """Route ``client``'s HTTP and push traffic to this pod."""
        client._fetch = self.fetch

        async def subscribe(sink):
            self.sinks[client.identity.user_id] = sink
            return None

        client.subscribe = subscribe
        return client

    def client_for(self, identity, scheme: str = "https") -> DirectoryClient:
        return self.attach(DirectoryClient(identity, DirectoryConfig(scheme=scheme)))

    def calls_to(self, method: str, path: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method and c["path"] == path]

    # -- helpers --------------------------------------------------------------

    @staticmethod
    def _reply(status: int, body: Any) -> tuple[int, str]:
        return status, json.dumps(body)

    def _authenticate(self, host: str, body: str) -> tuple[dict[str, str], str]:
        signed = SignedMessage.from_armored(body)
        fields = dict(parse_qsl(signed.text))
        self.last_fields = fields
        if fields.get("identityType") == "pubkeyhash":
            armored = self.keys_by_hash[fields["identity"]]
        else:
            href = urlsplit(fields["identity"])
            armored = self.aliases[(href.netloc, href.path.rsplit("/", 1)[-1])]
        key = PublicKey.from_armored(armored)
        if not key.verify(signed.signature, signed.text.encode("utf-8")):
            raise PermissionError("bad signature")
        return fields, key.user_id

    # -- transport ------------------------------------------------------------

    async def fetch(self, method, url, params=None, data=None):
        parts = urlsplit(url)
        host, path = parts.netloc, parts.path or "/"
        self.calls.append({"method": method, "url": url, "host": host, "path": path, "params": params, "data": data})
        try:
            return self._route(method, host, path, params or {}, data)
        except (KeyError, PermissionError) as e:
            return self._reply(401, {"error": f"Unauthorized: {e}"})

    def _route(self, method, host, path, params, data):
        if method == "POST" and path == "/":
            key = PublicKey.from_armored(data)
            self.keys_by_hash[sha1_hex(data)] = data
            return self._reply(200, {"registered": key.user_id})

        if method == "POST" and path == "/aliases":
            fields, user_id = self._authenticate(host, data)
            self.aliases[(host, fields["alias"])] = self.keys_by_hash[sha1_hex(self._key_of(user_id))]
            return self._reply(200, {"alias": fields["alias"]})

        if method == "GET" and path == "/aliases":
            self._authenticate(host, data)
            text = params.get("search", "")
            return self._reply(200, sorted(a for (h, a) in self.aliases if h == host and text in a))

        if method == "GET" and path.startswith("/aliases/"):
            armored = self.aliases.get((host, path.rsplit("/", 1)[-1]))
            if armored is None:
                return self._reply(404, {"error": "Alias not found"})
            return 200, armored

        if method == "POST" and path == "/tokens":
            fields, user_id = self._authenticate(host, data)
            value = uuid.uuid4().hex
            token = {"method": fields["method"], "resource": fields["resource"], "owner": user_id}
            self.tokens[value] = token
            self.issued_tokens.append({**token, "token": value})
            return self._reply(200, {"token": value, "method": fields["method"], "resource": fields["resource"]})

        if path == "/inboxes" and method in ("GET", "DELETE"):
            token = self.tokens.pop(params.get("token", ""), None)
            if token is None or token["method"] != method or token["resource"] != "/inboxes":
                return self._reply(401, {"error": "Invalid token"})
            if method == "GET":
                return self._reply(200, self.inboxes.get(token["owner"], []))
            self.inboxes[token["owner"]] = []
            return self._reply(200, {"purged": True})

        if method == "POST" and path.startswith("/inboxes/"):
            fields, _ = self._authenticate(host, data)
            recipient = f"{path.rsplit('/', 1)[-1]}@{host}"
            notification = {"key": fields["key"], "from": fields["from"], "timestamp": now_ms()}
            self.inboxes.setdefault(recipient, []).append(notification)
            sink = self.sinks.get(recipient)
            if sink is not None:
                sink(NotificationReceived(InboxNotification.from_dict(notification)))
            return self._reply(200, {"delivered": True})

        if method == "POST" and path == "/messages":
            fields, _ = self._authenticate(host, data)
            self.messages[fields["key"]] = fields["message"]
            return self._reply(200, {"key": fields["key"]})

        if method == "GET" and path.startswith("/messages/"):
            value = self.messages.get(path.rsplit("/", 1)[-1])
            if value is None:
                return self._reply(404, {"error": "Message not found"})
            return 200, value

        return self._reply(404, {"error": f"No route for {method} {path}"})

    def _key_of(self, user_id: str) -> str:
        for armored in self.keys_by_hash.values():
            if PublicKey.from_armored(armored).user_id == user_id:
                return armored
        raise KeyError(user_id)


@pytest.fixture
def fake_pod() -> FakePod:
    return FakePod()
