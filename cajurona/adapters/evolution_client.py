import logging

import requests

from .ports import GroupInfo, WhatsAppGateway, invite_url

log = logging.getLogger(__name__)


class EvolutionClient(WhatsAppGateway):
    """Adapter: real Evolution API HTTP client for one WhatsApp instance."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        instance: str,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.instance = instance
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": api_key,
                "Content-Type": "application/json",
            }
        )

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}/{self.instance}"

    def send_text(self, number: str, text: str) -> bool:
        try:
            resp = self.session.post(
                self._url("/message/sendText"),
                json={"number": number, "text": text},
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            log.error("Failed to send message to %s: %s", number, exc)
            return False
        return True

    def _create(self, subject: str, participants: list[str]) -> GroupInfo:
        resp = self.session.post(
            self._url("/group/create"),
            json={"subject": subject, "participants": participants},
        )
        resp.raise_for_status()
        data = resp.json()
        return GroupInfo(
            group_jid=data.get("id") or data.get("groupJid", ""),
            subject=data.get("subject", subject),
            participants=data.get("participants", []),
        )

    def create_group(self, subject: str, participants: list[str]) -> GroupInfo:
        try:
            group = self._create(subject, participants)
        except requests.RequestException as exc:
            if not participants:
                log.error("Failed to create WhatsApp group %r: %s", subject, exc)
                raise
            # The driver may have blocked being added; fall back to an empty
            # group that members join through the invite link.
            log.warning(
                "Could not add participants to %r (%s), creating empty group", subject, exc
            )
            group = self._create(subject, [])
        log.info("Created WhatsApp group %r (%s)", subject, group.group_jid)
        return group

    def get_invite_link(self, group_jid: str) -> str:
        resp = self.session.get(
            self._url("/group/invite-code"), params={"groupJid": group_jid}
        )
        resp.raise_for_status()
        data = resp.json()
        if isinstance(data, dict):
            code = data.get("inviteUrl") or data.get("inviteCode") or data.get("invite") or data.get("code")
        else:
            code = data
        if not isinstance(code, str) or not code:
            raise requests.RequestException(f"No invite code in response for {group_jid}")
        return invite_url(code)

    def get_participants(self, group_jid: str) -> list[dict]:
        try:
            resp = self.session.get(
                self._url("/group/participants"), params={"groupJid": group_jid}
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            log.error("Failed to fetch participants of %s: %s", group_jid, exc)
            return []
        if isinstance(data, dict):
            return data.get("participants") or []
        return data if isinstance(data, list) else []

    def renew_invite_link(self, group_jid: str) -> str:
        try:
            resp = self.session.put(
                self._url("/group/revoke-invite-code"), params={"groupJid": group_jid}
            )
            if not resp.ok:
                log.warning(
                    "Revoking invite of %s failed (%s), fetching current link",
                    group_jid, resp.status_code,
                )
        except requests.RequestException as exc:
            log.warning("Revoking invite of %s failed (%s), fetching current link", group_jid, exc)
        return self.get_invite_link(group_jid)
