"""
Sender → member resolution and onboarding of new riders.

A sender is known when one of the spellings of their phone matches a
user AND that user has an active membership.  Unknown senders join a
group either explicitly ("sou Ana, vou seg e qua") or silently on their
first message in a registered group chat.
"""

import logging
import re

from cajurona.domain.phones import lookup_formats, normalize_phone, same_phone
from cajurona.domain.schedule import day_label, scan_weekday_names
from cajurona.domain.store import CarpoolStore, DuplicateMembershipError, MemberView, StoreError

log = logging.getLogger(__name__)

PLACEHOLDER_NAME = "Novo Membro"

GROUP_NOT_REGISTERED = "❌ Grupo não cadastrado. Peça ao motorista para configurar."
ALREADY_REGISTERED = '👋 Você já está cadastrado! Use "ajuda" para ver os comandos.'
REGISTRATION_FAILED = "❌ Erro ao cadastrar. Tente novamente."

_NAME = re.compile(r"\bsou\s+(?:[oa]\s+)?([A-Za-zÀ-ÖØ-öø-ÿ]+)", re.IGNORECASE)


def extract_name(text: str) -> str | None:
    match = _NAME.search(text or "")
    return match.group(1).capitalize() if match else None


def is_introduction(text: str) -> bool:
    """True for messages like "sou a Maria" that ask to join explicitly."""
    return extract_name(text) is not None


class MemberDirectory:

    def __init__(self, store: CarpoolStore):
        self._store = store

    async def resolve_member(
        self, phone: str, whatsapp_id: str | None = None
    ) -> MemberView | None:
        """
        Find the sender's user by any spelling of their phone, backfill the
        WhatsApp id if unset, and return their active membership.
        None means "needs onboarding".
        """
        user = await self._store.find_user_by_phones(lookup_formats(phone))
        if user is None:
            return None

        if whatsapp_id and not user.whatsapp_id:
            await self._store.set_user_whatsapp_id(user.user_id, whatsapp_id)
            user.whatsapp_id = whatsapp_id

        member = await self._store.find_active_membership(user.user_id)
        if member is None:
            return None
        return MemberView.join(member, user)

    async def onboard(self, text: str, phone: str, whatsapp_group_id: str | None) -> str:
        """Explicit onboarding from free text.  Always returns a reply."""
        name = extract_name(text) or PLACEHOLDER_NAME
        days = scan_weekday_names(text or "")

        group = (
            await self._store.find_group_by_whatsapp_id(whatsapp_group_id)
            if whatsapp_group_id else None
        )
        if group is None:
            return GROUP_NOT_REGISTERED

        try:
            user = await self._store.find_user_by_phones(lookup_formats(phone))
            if user is None:
                user = await self._store.create_user(name, normalize_phone(phone))
            await self._store.create_member(
                group.group_id, user.user_id, approval_status="aprovado", default_days=days,
            )
        except DuplicateMembershipError:
            return ALREADY_REGISTERED
        except StoreError as exc:
            log.error("Onboarding %s into group %s failed: %s", phone, group.group_id, exc)
            return REGISTRATION_FAILED

        log.info("Onboarded %s (%s) into group %s", name, phone, group.group_id)
        labels = ", ".join(day_label(d) for d in days) or "nenhum"
        return (
            f"✅ Cadastrado, {name}!\n"
            f"Seus dias padrão: {labels}\n\n"
            'Use "ajuda" para ver os comandos.'
        )

    async def auto_onboard(
        self, phone: str, whatsapp_group_id: str, password: str
    ) -> MemberView | None:
        """
        Silently add a first-time sender to the group they wrote in.
        Returns None, creating nothing, when the group is unknown, the
        sender is its driver, or the membership already exists.
        """
        group = await self._store.find_group_by_whatsapp_id(whatsapp_group_id)
        if group is None:
            log.info("Auto-onboarding skipped: group %s not registered", whatsapp_group_id)
            return None

        if group.driver_id:
            driver = await self._store.get_user(group.driver_id)
            if driver and same_phone(driver.phone, phone):
                log.debug("Auto-onboarding skipped: %s is the driver", phone)
                return None

        user = await self._store.find_user_by_phones(lookup_formats(phone))
        if user is not None and await self._store.find_member(group.group_id, user.user_id):
            log.debug("Auto-onboarding skipped: %s already in group %s", phone, group.group_id)
            return None

        if user is None:
            digits = normalize_phone(phone)
            user = await self._store.create_user(
                f"Membro {digits[-4:]}", digits, password_hash=password,
            )

        member = await self._store.create_member(
            group.group_id, user.user_id, approval_status="aprovado", default_days=[],
        )
        log.info("Auto-onboarded %s into group %s", phone, group.group_id)
        return MemberView.join(member, user)
