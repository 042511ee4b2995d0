"""
Full pipeline tests using all simulators.

No network, no credentials.
The test exercises the complete flow end-to-end: member resolution,
classification, ledger, reply and activity log.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from cajurona.adapters.regex_intent import RegexIntentClassifier
from cajurona.adapters.simulator_whatsapp import SimulatorWhatsAppGateway
from cajurona.adapters.sqlite_store import SqliteCarpoolStore
from cajurona.domain.store import StoreError
from cajurona.onboarding import GROUP_NOT_REGISTERED
from cajurona.pipeline import (
    ASK_DELAY_MINUTES,
    STORE_FAILURE,
    InboundMessage,
    Pipeline,
    PipelineConfig,
    new_password,
    salutation,
)

GROUP_JID = "120363000000000001@g.us"
DRIVER_PHONE = "5579911110000"
ANA_PHONE = "5579998223366"
NEW_PHONE = "5579988887777"
MONDAY = date(2026, 3, 2)
NOW = datetime(2026, 3, 2, 6, 0)


async def _seed(store):
    carlos = await store.create_user("Carlos", DRIVER_PHONE)
    group = await store.create_group(
        "Carona UFS", carlos.user_id, "07:00", "18:00", "por_trajeto", per_trip_price=Decimal("12.50"),
    )
    await store.create_member(group.group_id, carlos.user_id, is_driver=True, approval_status="aprovado")
    await store.set_group_whatsapp(group.group_id, GROUP_JID, None)
    for offset in range(5):
        await store.create_trip(group.group_id, MONDAY + timedelta(days=offset), "ida", "07:00")
    ana = await store.create_user("Ana", ANA_PHONE)
    await store.create_member(group.group_id, ana.user_id, approval_status="aprovado")
    return group


def _group_msg(text, phone=ANA_PHONE, group_jid=GROUP_JID):
    return InboundMessage(
        text=text,
        phone=phone,
        sender_jid=f"{phone}@s.whatsapp.net",
        reply_to=group_jid,
        group_jid=group_jid,
    )


def _direct_msg(text, phone=ANA_PHONE):
    jid = f"{phone}@s.whatsapp.net"
    return InboundMessage(text=text, phone=phone, sender_jid=jid, reply_to=jid)


def _pipeline(store, gateway, now=NOW, **overrides):
    cfg = PipelineConfig(
        store=store,
        gateway=gateway,
        classifier=RegexIntentClassifier(),
        clock=lambda: now,
        password_factory=lambda: "123456",
        **overrides,
    )
    return Pipeline(cfg)


def _activity(store):
    return store._conn.execute(
        "SELECT tipo_acao, mensagem_original, intencao_detectada, confianca FROM logs_atividade"
    ).fetchall()


@pytest.fixture
def store():
    return SqliteCarpoolStore(":memory:")


@pytest.fixture
def gateway():
    return SimulatorWhatsAppGateway()


# ---------------------------------------------------------------------------
# Known members
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_confirmation_replies_in_group_and_logs(store, gateway):
    await _seed(store)

    result = await _pipeline(store, gateway).process(_group_msg("vou hoje"))

    assert result.action == "confirmar"
    assert gateway.sent == [(GROUP_JID, "✅ Confirmado para Segunda!\n💰 Débito: R$ 12.50")]
    [log_row] = _activity(store)
    assert tuple(log_row) == ("confirmar", "vou hoje", "confirmar", 0.9)


@pytest.mark.asyncio
async def test_sender_whatsapp_id_is_backfilled(store, gateway):
    await _seed(store)

    await _pipeline(store, gateway).process(_group_msg("status"))

    user = await store.find_user_by_phones([ANA_PHONE])
    assert user.whatsapp_id == f"{ANA_PHONE}@s.whatsapp.net"


@pytest.mark.asyncio
async def test_driver_cancels_after_cutoff(store, gateway):
    await _seed(store)
    pipeline = _pipeline(store, gateway, now=datetime(2026, 3, 2, 6, 45))

    await pipeline.process(_group_msg("não vou hoje", phone=DRIVER_PHONE))

    assert gateway.sent[-1] == (GROUP_JID, "❌ Cancelado para Segunda.")


@pytest.mark.asyncio
async def test_rider_cancels_after_cutoff_is_blocked(store, gateway):
    await _seed(store)
    pipeline = _pipeline(store, gateway, now=datetime(2026, 3, 2, 6, 45))

    await pipeline.process(_group_msg("não vou hoje"))

    assert gateway.sent[-1][1].startswith("⚠️ Não dá mais para cancelar Segunda")


@pytest.mark.asyncio
async def test_delay_without_minutes_asks(store, gateway):
    await _seed(store)

    result = await _pipeline(store, gateway).process(_group_msg("vou atrasar"))

    assert result.action == "atraso"
    assert result.reply == ASK_DELAY_MINUTES


@pytest.mark.asyncio
async def test_delay_with_minutes(store, gateway):
    await _seed(store)

    result = await _pipeline(store, gateway).process(_group_msg("vou atrasar 10 min"))

    assert result.reply == "⏰ Anotado! Você chegará às 07:10. Vou avisar o motorista."


@pytest.mark.asyncio
async def test_balance(store, gateway):
    await _seed(store)
    pipeline = _pipeline(store, gateway)
    await pipeline.process(_group_msg("vou seg e ter"))

    result = await pipeline.process(_group_msg("quanto devo?"))

    assert result.action == "saldo"
    assert "⚠️ Pendente: R$ 25.00" in result.reply


@pytest.mark.asyncio
async def test_greeting_uses_time_of_day(store, gateway):
    await _seed(store)

    result = await _pipeline(store, gateway).process(_group_msg("oi"))

    assert result.reply.startswith("Bom dia, Ana! 👋")


@pytest.mark.asyncio
async def test_help(store, gateway):
    await _seed(store)

    result = await _pipeline(store, gateway).process(_group_msg("ajuda"))

    assert result.reply.startswith("🚗 *Cajurona - Comandos*")
    assert "amanhã" in result.reply


@pytest.mark.asyncio
async def test_unknown_intent_suggests_commands(store, gateway):
    await _seed(store)

    result = await _pipeline(store, gateway).process(_group_msg("qual o pix?"))

    assert result.action == "desconhecido"
    assert result.reply.startswith("🤔 Não entendi, Ana. Tente:")
    assert _activity(store)[0]["confianca"] == 0.0


# ---------------------------------------------------------------------------
# Failure paths
# ---------------------------------------------------------------------------


class BrokenPresenceStore(SqliteCarpoolStore):

    async def upsert_presence(self, *args, **kwargs):
        raise StoreError("connection reset")


class BrokenActivityStore(SqliteCarpoolStore):

    async def log_activity(self, *args, **kwargs):
        raise StoreError("connection reset")


@pytest.mark.asyncio
async def test_store_failure_gets_generic_reply(gateway):
    store = BrokenPresenceStore(":memory:")
    await _seed(store)

    result = await _pipeline(store, gateway).process(_group_msg("vou hoje"))

    assert result.action == "confirmar"
    assert gateway.sent == [(GROUP_JID, STORE_FAILURE)]


@pytest.mark.asyncio
async def test_failed_balance_read_gets_generic_reply(store, gateway):
    await _seed(store)
    store._conn.execute("DROP VIEW vw_saldo_membros")

    result = await _pipeline(store, gateway).process(_group_msg("quanto devo?"))

    assert result.action == "saldo"
    assert gateway.sent == [(GROUP_JID, STORE_FAILURE)]


@pytest.mark.asyncio
async def test_activity_log_failure_does_not_affect_reply(gateway):
    store = BrokenActivityStore(":memory:")
    await _seed(store)

    result = await _pipeline(store, gateway).process(_group_msg("vou hoje"))

    assert gateway.sent == [(GROUP_JID, result.reply)]
    assert result.reply.startswith("✅ Confirmado")


@pytest.mark.asyncio
async def test_failed_send_keeps_state(store):
    group = await _seed(store)
    gateway = SimulatorWhatsAppGateway(fail_sends=True)

    result = await _pipeline(store, gateway).process(_group_msg("vou hoje"))

    assert result.action == "confirmar"
    rows = await store.status_rows(group.group_id, MONDAY, "ida")
    assert [r.status for r in rows if r.member_name == "Ana"] == ["confirmado"]


# ---------------------------------------------------------------------------
# Unknown senders and filtering
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_group_not_in_whitelist_is_ignored(store, gateway):
    await _seed(store)
    pipeline = _pipeline(store, gateway, allowed_groups=("999@g.us",))

    result = await pipeline.process(_group_msg("vou hoje"))

    assert result.action == "ignored"
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_whitelisted_group_is_processed(store, gateway):
    await _seed(store)
    pipeline = _pipeline(store, gateway, allowed_groups=(GROUP_JID,))

    assert (await pipeline.process(_group_msg("vou hoje"))).action == "confirmar"


@pytest.mark.asyncio
async def test_introduction_onboards_explicitly(store, gateway):
    await _seed(store)

    result = await _pipeline(store, gateway).process(
        _group_msg("oi, sou a Maria, vou seg e qua", phone=NEW_PHONE)
    )

    assert result.action == "onboarding"
    assert gateway.sent[0][0] == GROUP_JID
    assert gateway.sent[0][1].startswith("✅ Cadastrado, Maria!")


@pytest.mark.asyncio
async def test_first_message_auto_onboards_then_is_handled(store, gateway):
    await _seed(store)

    result = await _pipeline(store, gateway).process(_group_msg("vou hoje", phone=NEW_PHONE))

    assert result.action == "confirmar"
    welcome_to, welcome = gateway.sent[0]
    assert welcome_to == f"{NEW_PHONE}@s.whatsapp.net"
    assert "Carona UFS" in welcome
    assert "*123456*" in welcome
    assert gateway.sent[1] == (GROUP_JID, "✅ Confirmado para Segunda!\n💰 Débito: R$ 12.50")

    user = await store.find_user_by_phones([NEW_PHONE])
    assert user.name == "Membro 7777"


@pytest.mark.asyncio
async def test_unregistered_group_sender_is_ignored_silently(store, gateway):
    await _seed(store)

    result = await _pipeline(store, gateway).process(
        _group_msg("vou hoje", phone=NEW_PHONE, group_jid="999@g.us")
    )

    assert result.action == "ignored"
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_unknown_sender_in_direct_chat_gets_instructions(store, gateway):
    await _seed(store)

    result = await _pipeline(store, gateway).process(_direct_msg("vou hoje", phone=NEW_PHONE))

    assert result.action == "onboarding"
    assert gateway.sent == [(f"{NEW_PHONE}@s.whatsapp.net", GROUP_NOT_REGISTERED)]


@pytest.mark.asyncio
async def test_known_member_in_direct_chat_gets_private_reply(store, gateway):
    await _seed(store)

    await _pipeline(store, gateway).process(_direct_msg("quem vai?"))

    assert gateway.sent[0][0] == f"{ANA_PHONE}@s.whatsapp.net"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("hour, expected", [
    (5, "Bom dia"), (11, "Bom dia"), (12, "Boa tarde"), (17, "Boa tarde"), (18, "Boa noite"),
])
def test_salutation(hour, expected):
    assert salutation(datetime(2026, 3, 2, hour, 59 if hour == 11 else 0)) == expected


def test_new_password_is_six_digits():
    password = new_password()
    assert len(password) == 6
    assert password.isdigit()
