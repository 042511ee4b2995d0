"""
CarpoolStore port — the hosted relational store the bot reads and writes.

Table and view names follow the store's own schema: usuarios, grupos,
membros, viagens, presencas, transacoes, logs_atividade, and the read-only
views vw_status_semana and vw_saldo_membros.  Records below use English
field names; adapters translate to and from the stored columns.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

PricingModel = Literal["semanal", "por_trajeto"]
Leg = Literal["ida", "volta"]
PresenceStatus = Literal["confirmado", "cancelado", "atrasado"]
TransactionKind = Literal["debito", "pagamento"]
ApprovalStatus = Literal["pendente", "aprovado", "rejeitado"]

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Round a stored or typed amount (str, int, float, Decimal) to cents."""
    if value is None or value == "":
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class StoreError(Exception):
    """A read or write against the store failed."""


class DuplicateMembershipError(StoreError):
    """The (group, user) membership already exists."""


@dataclass
class User:
    user_id: str
    name: str
    phone: str
    whatsapp_id: str | None = None
    password_hash: str = ""
    document_number: str = ""
    document_status: str = "pendente"      # pendente | aprovado | rejeitado | nao_enviada
    license_status: str = "nao_enviada"
    neighborhood: str = ""


@dataclass
class Group:
    group_id: str
    name: str
    driver_id: str | None
    outbound_time: str                     # "07:00"
    return_time: str                       # "18:00"
    pricing_model: PricingModel
    weekly_price: Decimal = ZERO
    per_trip_price: Decimal = ZERO
    cancellation_window_minutes: int = 30
    whatsapp_group_id: str | None = None
    invite_link: str | None = None

    def departure_for(self, leg: Leg) -> str:
        return self.outbound_time if leg == "ida" else self.return_time


@dataclass
class Member:
    member_id: str
    group_id: str
    user_id: str
    is_driver: bool = False
    active: bool = True
    approval_status: ApprovalStatus = "pendente"
    default_days: list[str] = field(default_factory=list)


@dataclass
class MemberView:
    """
    Read-side projection handlers work with: a membership row plus the
    identity fields copied up from its user.
    """
    member_id: str
    group_id: str
    user_id: str
    is_driver: bool
    active: bool
    approval_status: ApprovalStatus
    default_days: list[str]
    name: str
    phone: str
    whatsapp_id: str | None

    @classmethod
    def join(cls, member: Member, user: User) -> "MemberView":
        return cls(
            member_id=member.member_id,
            group_id=member.group_id,
            user_id=member.user_id,
            is_driver=member.is_driver,
            active=member.active,
            approval_status=member.approval_status,
            default_days=list(member.default_days),
            name=user.name,
            phone=user.phone,
            whatsapp_id=user.whatsapp_id,
        )


@dataclass
class Trip:
    trip_id: str
    group_id: str
    day: date
    leg: Leg
    departure_time: str
    status: str = "agendada"


@dataclass
class Presence:
    presence_id: str
    trip_id: str
    member_id: str
    status: PresenceStatus
    confirmed_at: datetime | None = None
    delay_time: str | None = None          # arrival "HH:MM" when late
    note: str | None = None


@dataclass
class Transaction:
    transaction_id: str
    group_id: str
    member_id: str
    kind: TransactionKind
    amount: Decimal
    description: str
    presence_id: str | None = None


@dataclass
class StatusRow:
    """One row of vw_status_semana: a trip joined with one presence."""
    group_id: str
    trip_id: str
    day: date
    leg: Leg
    departure_time: str
    member_id: str | None
    member_name: str | None
    status: PresenceStatus | None
    delay_time: str | None
    note: str | None
    weekly_price: Decimal


@dataclass
class Balance:
    """One row of vw_saldo_membros."""
    member_id: str
    total_debits: Decimal = ZERO
    total_payments: Decimal = ZERO
    balance: Decimal = ZERO


class CarpoolStore(ABC):
    """
    Port: everything the bot needs from the carpool database.

    The store enforces uniqueness (one presence per trip and member, one
    membership per group and user, one driver per group); the bot does
    not.  Write failures raise StoreError.
    """

    # -- users ---------------------------------------------------------------

    @abstractmethod
    async def find_user_by_phones(self, phones: list[str]) -> User | None:
        """First user whose stored phone is any of the given spellings."""
        ...

    @abstractmethod
    async def get_user(self, user_id: str) -> User | None:
        ...

    @abstractmethod
    async def create_user(
        self,
        name: str,
        phone: str,
        password_hash: str = "",
        document_number: str = "",
        document_status: str = "pendente",
    ) -> User:
        ...

    @abstractmethod
    async def set_user_whatsapp_id(self, user_id: str, whatsapp_id: str) -> None:
        ...

    # -- groups and members ---------------------------------------------------

    @abstractmethod
    async def get_group(self, group_id: str) -> Group | None:
        ...

    @abstractmethod
    async def find_group_by_whatsapp_id(self, whatsapp_group_id: str) -> Group | None:
        ...

    @abstractmethod
    async def create_group(
        self,
        name: str,
        driver_id: str | None,
        outbound_time: str,
        return_time: str,
        pricing_model: PricingModel,
        weekly_price: Decimal = ZERO,
        per_trip_price: Decimal = ZERO,
        cancellation_window_minutes: int = 30,
    ) -> Group:
        ...

    @abstractmethod
    async def set_group_whatsapp(
        self, group_id: str, whatsapp_group_id: str, invite_link: str | None
    ) -> None:
        ...

    @abstractmethod
    async def get_member(self, member_id: str) -> Member | None:
        ...

    @abstractmethod
    async def find_member(self, group_id: str, user_id: str) -> Member | None:
        ...

    @abstractmethod
    async def find_active_membership(self, user_id: str) -> Member | None:
        """The user's membership with ativo=true, if any."""
        ...

    @abstractmethod
    async def create_member(
        self,
        group_id: str,
        user_id: str,
        is_driver: bool = False,
        approval_status: ApprovalStatus = "pendente",
        default_days: list[str] | None = None,
    ) -> Member:
        """Raises DuplicateMembershipError if the user is already in the group."""
        ...

    # -- trips and presences --------------------------------------------------

    @abstractmethod
    async def create_trip(
        self, group_id: str, day: date, leg: Leg, departure_time: str
    ) -> Trip:
        ...

    @abstractmethod
    async def find_trip(self, group_id: str, day: date, leg: Leg) -> Trip | None:
        ...

    @abstractmethod
    async def get_presence(self, trip_id: str, member_id: str) -> Presence | None:
        ...

    @abstractmethod
    async def upsert_presence(
        self,
        trip_id: str,
        member_id: str,
        status: PresenceStatus,
        confirmed_at: datetime | None = None,
        delay_time: str | None = None,
        note: str | None = None,
    ) -> Presence:
        """
        Insert or overwrite the presence keyed by (trip, member).
        Fields passed as None keep their stored value.
        """
        ...

    # -- ledger ----------------------------------------------------------------

    @abstractmethod
    async def find_debit(self, presence_id: str) -> Transaction | None:
        ...

    @abstractmethod
    async def add_transaction(
        self,
        group_id: str,
        member_id: str,
        kind: TransactionKind,
        amount: Decimal,
        description: str,
        presence_id: str | None = None,
    ) -> Transaction:
        ...

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> None:
        ...

    @abstractmethod
    async def list_transactions(self, member_id: str) -> list[Transaction]:
        """All ledger entries of a member, oldest first."""
        ...

    # -- views -----------------------------------------------------------------

    @abstractmethod
    async def status_rows(self, group_id: str, day: date, leg: Leg) -> list[StatusRow]:
        """vw_status_semana filtered to one group, date and leg."""
        ...

    @abstractmethod
    async def member_balance(self, member_id: str) -> Balance | None:
        """vw_saldo_membros row for the member, or None if it has none."""
        ...

    # -- activity log ---------------------------------------------------------

    @abstractmethod
    async def log_activity(
        self,
        member_id: str,
        action: str,
        original_message: str,
        detected_intent: str,
        confidence: float,
    ) -> None:
        ...
