"""
Webhook endpoint tests: FastAPI app over the simulator gateway and an
in-memory SQLite store.
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from cajurona.adapters.regex_intent import RegexIntentClassifier
from cajurona.adapters.simulator_whatsapp import SimulatorWhatsAppGateway
from cajurona.adapters.sqlite_store import SqliteCarpoolStore
from cajurona.config import Settings
from cajurona.pipeline import Pipeline, PipelineConfig
from cajurona.webhook import SKIPPED, create_app, parse_webhook

GROUP_JID = "120363000000000001@g.us"
ANA_PHONE = "5579998223366"
ANA_JID = f"{ANA_PHONE}@s.whatsapp.net"


def _payload(text, remote_jid=GROUP_JID, participant=ANA_JID, from_me=False, **data):
    key = {"remoteJid": remote_jid, "fromMe": from_me, "id": "3EB0C4"}
    if participant:
        key["participant"] = participant
    body = {"key": key, "pushName": "Ana", "message": {"conversation": text}}
    body.update(data)
    return {"event": "messages.upsert", "instance": "cajurona", "data": body}


async def _seed(store):
    carlos = await store.create_user("Carlos", "5579911110000")
    group = await store.create_group("Carona UFS", carlos.user_id, "07:00", "18:00", "semanal", Decimal("100"))
    await store.create_member(group.group_id, carlos.user_id, is_driver=True, approval_status="aprovado")
    await store.set_group_whatsapp(group.group_id, GROUP_JID, None)
    await store.create_trip(group.group_id, date(2026, 3, 2), "ida", "07:00")
    ana = await store.create_user("Ana", ANA_PHONE)
    await store.create_member(group.group_id, ana.user_id, approval_status="aprovado")


class ExplodingPipeline:

    async def process(self, msg):
        raise RuntimeError("boom")


@pytest.fixture
def gateway():
    return SimulatorWhatsAppGateway()


@pytest.fixture
def client(gateway):
    store = SqliteCarpoolStore(":memory:")
    asyncio.run(_seed(store))
    classifier = RegexIntentClassifier()
    pipeline = Pipeline(PipelineConfig(
        store=store,
        gateway=gateway,
        classifier=classifier,
        clock=lambda: datetime(2026, 3, 2, 6, 0),
    ))
    settings = Settings(whatsapp_channel="simulator", webhook_secret="s3cret")
    return TestClient(create_app(settings, pipeline, classifier))


AUTH = {"x-webhook-secret": "s3cret"}


# ---------------------------------------------------------------------------
# /webhook
# ---------------------------------------------------------------------------


def test_group_message_is_processed(client, gateway):
    resp = client.post("/webhook", json=_payload("vou hoje"), headers=AUTH)

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "action": "confirmar"}
    assert gateway.messages_to(GROUP_JID) == ["✅ Confirmado para Segunda!"]


def test_wrong_secret_is_unauthorized(client, gateway):
    resp = client.post("/webhook", json=_payload("vou hoje"), headers={"x-webhook-secret": "nope"})

    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized"}
    assert gateway.sent == []


def test_missing_secret_is_unauthorized(client):
    assert client.post("/webhook", json=_payload("vou hoje")).status_code == 401


def test_secret_not_required_when_unset(gateway):
    app = create_app(Settings(whatsapp_channel="simulator"), ExplodingPipeline(), RegexIntentClassifier())
    resp = TestClient(app).post("/webhook", json=_payload("vou hoje", from_me=True))
    assert resp.json() == SKIPPED


def test_own_messages_are_skipped(client, gateway):
    resp = client.post("/webhook", json=_payload("vou hoje", from_me=True), headers=AUTH)

    assert resp.json() == SKIPPED
    assert gateway.sent == []


def test_non_text_message_is_skipped(client):
    payload = _payload("")
    payload["data"]["message"] = {"imageMessage": {"caption": None}}

    assert client.post("/webhook", json=payload, headers=AUTH).json() == SKIPPED


def test_invalid_json_is_skipped(client):
    resp = client.post(
        "/webhook",
        content=b"not json",
        headers={**AUTH, "content-type": "application/json"},
    )
    assert resp.json() == SKIPPED


def test_pipeline_error_is_500():
    settings = Settings(whatsapp_channel="simulator")
    app = create_app(settings, ExplodingPipeline(), RegexIntentClassifier())

    resp = TestClient(app).post("/webhook", json=_payload("vou hoje"))

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error"}


# ---------------------------------------------------------------------------
# /health and /test
# ---------------------------------------------------------------------------


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["timestamp"]


def test_classifier_endpoint(client):
    resp = client.post("/test", json={"numero": ANA_PHONE, "texto": "vou atrasar 15 min"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["msgRecebida"] == "vou atrasar 15 min"
    assert body["intent"]["action"] == "atraso"
    assert body["intent"]["minutos"] == 15


@pytest.mark.parametrize("body", [{}, {"numero": ANA_PHONE}, {"texto": "vou hoje"}])
def test_classifier_endpoint_requires_both_fields(client, body):
    assert client.post("/test", json=body).status_code == 400


# ---------------------------------------------------------------------------
# parse_webhook
# ---------------------------------------------------------------------------


def test_parse_group_message():
    msg = parse_webhook(_payload("vou hoje"))

    assert msg.text == "vou hoje"
    assert msg.phone == ANA_PHONE
    assert msg.sender_jid == ANA_JID
    assert msg.reply_to == GROUP_JID
    assert msg.group_jid == GROUP_JID
    assert msg.is_group


def test_parse_direct_message():
    msg = parse_webhook(_payload("saldo", remote_jid=ANA_JID, participant=None))

    assert msg.phone == ANA_PHONE
    assert msg.reply_to == ANA_JID
    assert msg.group_jid is None


def test_parse_extended_text():
    payload = _payload("")
    payload["data"]["message"] = {"extendedTextMessage": {"text": "quem vai?"}}

    assert parse_webhook(payload).text == "quem vai?"


def test_parse_lid_sender_in_group_uses_sender_pn():
    msg = parse_webhook(_payload("vou hoje", participant="99887766@lid", senderPn=ANA_JID))

    assert msg.phone == ANA_PHONE
    assert msg.sender_jid == "99887766@lid"
    assert msg.reply_to == GROUP_JID


def test_parse_lid_direct_chat_replies_to_phone():
    msg = parse_webhook(
        _payload("saldo", remote_jid="99887766@lid", participant=None, senderPn=ANA_JID)
    )

    assert msg.phone == ANA_PHONE
    assert msg.reply_to == ANA_JID


@pytest.mark.parametrize("payload", [
    None,
    {},
    {"data": "x"},
    {"data": {"key": {"remoteJid": ""}, "message": {"conversation": "oi"}}},
    {"data": {"key": {"remoteJid": GROUP_JID, "participant": ANA_JID}, "message": {"conversation": "   "}}},
])
def test_parse_ignores_unusable_payloads(payload):
    assert parse_webhook(payload) is None


@pytest.mark.parametrize("data", [
    {"key": "3EB0C4", "message": {"conversation": "vou hoje"}},
    {"key": {"remoteJid": GROUP_JID, "participant": ANA_JID}, "message": "vou hoje"},
    {"key": {"remoteJid": GROUP_JID, "participant": ANA_JID}, "message": {"extendedTextMessage": "vou hoje"}},
    {"key": {"remoteJid": 12345, "participant": ANA_JID}, "message": {"conversation": "vou hoje"}},
    {"key": ["remoteJid"], "message": ["conversation"]},
])
def test_parse_ignores_malformed_sections(data):
    assert parse_webhook({"event": "messages.upsert", "data": data}) is None


def test_malformed_key_is_skipped_not_500(client, gateway):
    payload = {"event": "messages.upsert", "data": {"key": "3EB0C4", "message": "vou hoje"}}

    resp = client.post("/webhook", json=payload, headers=AUTH)

    assert resp.status_code == 200
    assert resp.json() == SKIPPED
    assert gateway.sent == []
