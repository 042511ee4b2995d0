"""
EvolutionClient request/response handling against a recording session.

No network: FakeSession stands in for requests.Session and replays
queued responses in order.
"""

import pytest
import requests

from cajurona.adapters.evolution_client import EvolutionClient

BASE = "https://evo.example.com/"
GROUP_JID = "120363000000000001@g.us"


class FakeResponse:

    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    @property
    def ok(self):
        return self.status_code < 400

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} Error")

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeSession:
    """Records every call; answers with queued responses or raised errors."""

    def __init__(self, *responses):
        self.headers = {}
        self.calls = []
        self._responses = list(responses)

    def _reply(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._reply("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._reply("POST", url, **kwargs)

    def put(self, url, **kwargs):
        return self._reply("PUT", url, **kwargs)


def _client(*responses):
    session = FakeSession(*responses)
    return EvolutionClient(BASE, "secret-key", "cajurona", session=session), session


def test_session_carries_api_key():
    _, session = _client()
    assert session.headers["apikey"] == "secret-key"
    assert session.headers["Content-Type"] == "application/json"


# -- send_text ---------------------------------------------------------------


def test_send_text_posts_to_instance_endpoint():
    client, session = _client(FakeResponse(201, {"key": {"id": "ABC"}}))

    assert client.send_text(GROUP_JID, "oi") is True

    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url == "https://evo.example.com/message/sendText/cajurona"
    assert kwargs["json"] == {"number": GROUP_JID, "text": "oi"}


def test_send_text_failure_is_reported():
    client, _ = _client(FakeResponse(500))
    assert client.send_text(GROUP_JID, "oi") is False


def test_send_text_connection_error_is_reported():
    client, _ = _client(requests.ConnectionError("refused"))
    assert client.send_text(GROUP_JID, "oi") is False


# -- create_group ------------------------------------------------------------


def test_create_group():
    client, session = _client(FakeResponse(201, {"id": GROUP_JID, "subject": "Carona UFS"}))

    group = client.create_group("Carona UFS", ["5579911110000"])

    assert group.group_jid == GROUP_JID
    assert group.subject == "Carona UFS"
    assert session.calls[0][2]["json"]["participants"] == ["5579911110000"]


def test_create_group_retries_without_participants():
    client, session = _client(
        FakeResponse(400),
        FakeResponse(201, {"groupJid": GROUP_JID}),
    )

    group = client.create_group("Carona UFS", ["5579911110000"])

    assert group.group_jid == GROUP_JID
    assert [c[2]["json"]["participants"] for c in session.calls] == [["5579911110000"], []]


def test_create_group_without_participants_raises():
    client, session = _client(FakeResponse(500))

    with pytest.raises(requests.HTTPError):
        client.create_group("Carona UFS", [])
    assert len(session.calls) == 1


def test_create_group_raises_when_retry_fails():
    client, _ = _client(FakeResponse(400), FakeResponse(500))

    with pytest.raises(requests.HTTPError):
        client.create_group("Carona UFS", ["5579911110000"])


# -- invite links ------------------------------------------------------------


@pytest.mark.parametrize("payload", [
    {"inviteUrl": "https://chat.whatsapp.com/AbC123"},
    {"inviteCode": "AbC123"},
    {"invite": "AbC123"},
    {"code": "AbC123"},
    "AbC123",
])
def test_invite_link_shapes(payload):
    client, session = _client(FakeResponse(200, payload))

    assert client.get_invite_link(GROUP_JID) == "https://chat.whatsapp.com/AbC123"
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("GET", "https://evo.example.com/group/invite-code/cajurona")
    assert kwargs["params"] == {"groupJid": GROUP_JID}


def test_invite_link_missing_code_raises():
    client, _ = _client(FakeResponse(200, {"status": "ok"}))

    with pytest.raises(requests.RequestException):
        client.get_invite_link(GROUP_JID)


def test_renew_revokes_then_fetches():
    client, session = _client(
        FakeResponse(200, {"status": "ok"}),
        FakeResponse(200, {"inviteCode": "New456"}),
    )

    assert client.renew_invite_link(GROUP_JID) == "https://chat.whatsapp.com/New456"
    assert [c[0] for c in session.calls] == ["PUT", "GET"]
    assert session.calls[0][1] == "https://evo.example.com/group/revoke-invite-code/cajurona"


@pytest.mark.parametrize("revoke", [FakeResponse(404), requests.Timeout("slow")])
def test_renew_falls_back_to_current_link(revoke):
    client, _ = _client(revoke, FakeResponse(200, {"inviteCode": "Old123"}))

    assert client.renew_invite_link(GROUP_JID) == "https://chat.whatsapp.com/Old123"


# -- participants ------------------------------------------------------------


PARTICIPANTS = [
    {"id": "5579911110000@s.whatsapp.net", "admin": "superadmin"},
    {"id": "99887766@lid", "admin": None},
]


@pytest.mark.parametrize("payload", [{"participants": PARTICIPANTS}, PARTICIPANTS])
def test_participants_shapes(payload):
    client, _ = _client(FakeResponse(200, payload))
    assert client.get_participants(GROUP_JID) == PARTICIPANTS


@pytest.mark.parametrize("response", [
    FakeResponse(500),
    FakeResponse(200, None),
    FakeResponse(200, {"error": "not found"}),
    requests.ConnectionError("refused"),
])
def test_participants_failure_is_empty(response):
    client, _ = _client(response)
    assert client.get_participants(GROUP_JID) == []
