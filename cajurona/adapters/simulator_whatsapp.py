import secrets

from .ports import GroupInfo, WhatsAppGateway, invite_url


class SimulatorWhatsAppGateway(WhatsAppGateway):
    """
    In-memory fake for testing. No mocking framework needed.

    Test helpers:
        reject_participants  — when True, create_group() with participants
                               fails once and falls back to an empty group
        fail_sends           — when True, send_text() reports failure
        inject_participant() — add a member to a group created here
        sent                 — list of (number, text) tuples recorded by
                               send_text()
    """

    def __init__(self, reject_participants: bool = False, fail_sends: bool = False):
        self.reject_participants = reject_participants
        self.fail_sends = fail_sends
        self.sent: list[tuple[str, str]] = []
        self.revoked: list[str] = []
        self._groups: dict[str, GroupInfo] = {}
        self._invites: dict[str, str] = {}
        self._next_id = 1

    def inject_participant(self, group_jid: str, jid: str, admin: str | None = None) -> None:
        """Test helper: add a participant to an existing simulated group."""
        self._groups[group_jid].participants.append({"id": jid, "admin": admin})

    def send_text(self, number: str, text: str) -> bool:
        if self.fail_sends:
            return False
        self.sent.append((number, text))
        return True

    def messages_to(self, number: str) -> list[str]:
        return [text for to, text in self.sent if to == number]

    def create_group(self, subject: str, participants: list[str]) -> GroupInfo:
        if participants and self.reject_participants:
            participants = []
        group_jid = f"1203630000000{self._next_id:05d}@g.us"
        self._next_id += 1
        group = GroupInfo(
            group_jid=group_jid,
            subject=subject,
            participants=[
                {"id": f"{p}@s.whatsapp.net", "admin": None} for p in participants
            ],
        )
        self._groups[group_jid] = group
        self._invites[group_jid] = secrets.token_urlsafe(16)
        return group

    def get_invite_link(self, group_jid: str) -> str:
        return invite_url(self._invites[group_jid])

    def get_participants(self, group_jid: str) -> list[dict]:
        group = self._groups.get(group_jid)
        return list(group.participants) if group else []

    def renew_invite_link(self, group_jid: str) -> str:
        self.revoked.append(self._invites[group_jid])
        self._invites[group_jid] = secrets.token_urlsafe(16)
        return self.get_invite_link(group_jid)
