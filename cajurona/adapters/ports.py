from abc import ABC, abstractmethod
from dataclasses import dataclass, field

INVITE_URL = "https://chat.whatsapp.com/"


@dataclass
class GroupInfo:
    """A WhatsApp group as returned by the gateway on creation."""

    group_jid: str                     # "120363000000000000@g.us"
    subject: str
    participants: list[dict] = field(default_factory=list)


def invite_url(code: str) -> str:
    """Full invite link from either a bare code or an already-complete URL."""
    if code.startswith("http"):
        return code
    return f"{INVITE_URL}{code}"


class WhatsAppGateway(ABC):
    """
    Port: how we talk to riders and manage carpool groups on WhatsApp.

    The bot depends ONLY on this interface.
    It doesn't know or care whether messages go through the real
    messaging API or an in-memory simulator.
    """

    @abstractmethod
    def send_text(self, number: str, text: str) -> bool:
        """
        Send a text message to a phone, user JID or group JID.
        Failures are logged and reported as False, never raised.
        """
        ...

    @abstractmethod
    def create_group(self, subject: str, participants: list[str]) -> GroupInfo:
        """
        Create a group.  If adding the participants fails, retry once as an
        empty group; raise if that fails too.
        """
        ...

    @abstractmethod
    def get_invite_link(self, group_jid: str) -> str:
        """Return the full https://chat.whatsapp.com/<code> link."""
        ...

    @abstractmethod
    def get_participants(self, group_jid: str) -> list[dict]:
        """Return the group's participants, or [] on any failure."""
        ...

    @abstractmethod
    def renew_invite_link(self, group_jid: str) -> str:
        """Revoke the current invite code and return the new link."""
        ...
