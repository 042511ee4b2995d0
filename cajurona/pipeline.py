"""
Main processing pipeline.

Wires together all ports for one inbound WhatsApp message:

  1. Resolve the sender to a member (onboarding unknown senders)
  2. Classify the text → Intent
  3. Dispatch to the presence ledger → reply text
  4. Send the reply through the gateway
  5. Record the message in logs_atividade

State changes are committed before the reply is sent; a failed send is
logged by the gateway and never rolls anything back.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Literal

from cajurona.adapters.ports import WhatsAppGateway
from cajurona.domain.intent import Intent, IntentClassifier
from cajurona.domain.store import CarpoolStore, Group, MemberView, StoreError
from cajurona.ledger import PresenceLedger
from cajurona.onboarding import GROUP_NOT_REGISTERED, MemberDirectory, is_introduction
from cajurona.templates import render_reply

log = logging.getLogger(__name__)

STORE_FAILURE = "⚠️ Algo deu errado. Tente novamente em instantes."
ASK_DELAY_MINUTES = '⏰ Quantos minutos de atraso? Ex: "vou atrasar 10 min"'


def new_password() -> str:
    """Six-digit one-time password for auto-onboarded riders."""
    return f"{secrets.randbelow(10 ** 6):06d}"


def salutation(at: datetime) -> str:
    if at.hour < 12:
        return "Bom dia"
    if at.hour < 18:
        return "Boa tarde"
    return "Boa noite"


@dataclass
class InboundMessage:
    """A text message extracted from a gateway webhook."""

    text: str
    phone: str                   # sender's phone digits
    sender_jid: str              # participant in groups, else remoteJid
    reply_to: str                # chat the answer goes back to
    group_jid: str | None = None

    @property
    def is_group(self) -> bool:
        return self.group_jid is not None

    @property
    def private_jid(self) -> str:
        return f"{self.phone}@s.whatsapp.net"


@dataclass
class PipelineConfig:
    store: CarpoolStore
    gateway: WhatsAppGateway
    classifier: IntentClassifier
    allowed_groups: tuple[str, ...] = ()     # empty = every group
    clock: Callable[[], datetime] = datetime.now
    password_factory: Callable[[], str] = field(default=new_password)


@dataclass
class PipelineResult:
    action: Literal[
        "ignored",      # filtered group or silent onboarding skip
        "onboarding",   # explicit onboarding reply sent
        "confirmar", "cancelar", "atraso", "status",
        "saldo", "ajuda", "saudacao", "desconhecido",
    ]
    details: str = ""
    reply: str = ""


class Pipeline:
    """
    Stateless pipeline step: process one rider message.

    Call process() once per inbound message.
    """

    def __init__(self, config: PipelineConfig):
        self._cfg = config
        self._ledger = PresenceLedger(config.store, clock=config.clock)
        self._directory = MemberDirectory(config.store)

    def _group_allowed(self, group_jid: str) -> bool:
        allowed = self._cfg.allowed_groups
        return not allowed or group_jid in allowed

    async def process(self, msg: InboundMessage) -> PipelineResult:
        if msg.is_group and not self._group_allowed(msg.group_jid):
            log.info("Ignoring message from non-whitelisted group %s", msg.group_jid)
            return PipelineResult(action="ignored", details="group not allowed")

        log.debug("from=%s chat=%s text=%.60r", msg.phone, msg.reply_to, msg.text)

        member = await self._directory.resolve_member(msg.phone, msg.sender_jid)

        if member is None:
            if not msg.is_group or is_introduction(msg.text):
                reply = await self._directory.onboard(msg.text, msg.phone, msg.group_jid)
                self._cfg.gateway.send_text(msg.reply_to, reply)
                return PipelineResult(action="onboarding", reply=reply)

            member = await self._auto_onboard(msg)
            if member is None:
                return PipelineResult(action="ignored", details="sender not onboarded")

        now = self._cfg.clock()
        intent = self._cfg.classifier.classify(msg.text, today=now.date())
        log.info(
            "from=%s member=%s intent=%s conf=%.2f days=%s",
            msg.phone, member.member_id, intent.action, intent.confidence, intent.days,
        )

        try:
            group = await self._cfg.store.get_group(member.group_id)
            if group is None:
                reply = GROUP_NOT_REGISTERED
            else:
                reply = await self._dispatch(intent, member, group, now)
        except StoreError as exc:
            log.error("member=%s intent=%s store failure: %s", member.member_id, intent.action, exc)
            reply = STORE_FAILURE

        self._cfg.gateway.send_text(msg.reply_to, reply)
        await self._log_activity(member, intent, msg.text)

        return PipelineResult(
            action=intent.action,
            details=f"confidence={intent.confidence:.2f}",
            reply=reply,
        )

    async def _auto_onboard(self, msg: InboundMessage) -> MemberView | None:
        password = self._cfg.password_factory()
        try:
            member = await self._directory.auto_onboard(msg.phone, msg.group_jid, password)
            if member is None:
                return None
            group = await self._cfg.store.get_group(member.group_id)
        except StoreError as exc:
            log.error("Auto-onboarding %s failed: %s", msg.phone, exc)
            return None

        welcome = render_reply(
            "welcome",
            group_name=group.name if group else "",
            password=password,
        )
        self._cfg.gateway.send_text(msg.private_jid, welcome)
        return member

    async def _dispatch(
        self, intent: Intent, member: MemberView, group: Group, now: datetime
    ) -> str:
        ledger = self._ledger

        if intent.action == "confirmar":
            return await ledger.confirm(member, group, intent.days)
        if intent.action == "cancelar":
            return await ledger.cancel(member, group, intent.days, is_driver=member.is_driver)
        if intent.action == "atraso":
            if not intent.minutes:
                return ASK_DELAY_MINUTES
            return await ledger.register_delay(member, group, intent.minutes)
        if intent.action == "status":
            return await ledger.status_today(group)
        if intent.action == "saldo":
            return await ledger.balance_message(member)
        if intent.action == "saudacao":
            return render_reply("greeting", salutation=salutation(now), name=member.name)
        if intent.action == "ajuda":
            return render_reply("help")
        return render_reply("unknown", name=member.name)

    async def _log_activity(self, member: MemberView, intent: Intent, text: str) -> None:
        try:
            await self._cfg.store.log_activity(
                member.member_id, intent.action, text, intent.action, intent.confidence,
            )
        except StoreError as exc:
            log.error("member=%s activity log failed: %s", member.member_id, exc)
