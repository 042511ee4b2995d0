"""
Presence and ledger rules.

Turns a classified intent into store mutations and a reply string:

  confirm  → presence "confirmado", plus one debit per leg under per-trip pricing
  cancel   → presence "cancelado", refunding the linked debit; today's legs
             are locked for riders once the cancellation window has started
  delay    → presence "atrasado" on today's outbound leg with the arrival time
  status   → who rides today, from vw_status_semana
  balance  → debits, payments and pending amount, from vw_saldo_membros

Not-found conditions come back as user-facing strings.  Store failures
propagate as StoreError for the caller to report.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Sequence

from cajurona.domain.schedule import at_clock, add_minutes, day_label, resolve_day
from cajurona.domain.store import ZERO, Balance, CarpoolStore, Group, Leg, MemberView, to_money

log = logging.getLogger(__name__)

DEFAULT_LEGS: tuple[Leg, ...] = ("ida",)

NO_TRIPS = "🤔 Não encontrei viagens para os dias informados."
NO_TRIP_TODAY = "🤔 Não há viagem agendada para hoje."
NOTHING_CONFIRMED = "📋 Nenhuma confirmação para hoje ainda."
MEMBER_NOT_FOUND = "❌ Membro não encontrado."


def _money(amount: Decimal) -> str:
    return f"R$ {to_money(amount)}"


def _label(token: str, leg: Leg, legs: Sequence[Leg]) -> str:
    name = day_label(token)
    if tuple(legs) == DEFAULT_LEGS:
        return name
    return f"{name} ({leg})"


class PresenceLedger:
    """
    Presence state machine and per-member ledger for one store.

    `clock` returns the server's local wall-clock time; every "today"
    and every cancellation cutoff is measured against it.
    """

    def __init__(self, store: CarpoolStore, clock: Callable[[], datetime] = datetime.now):
        self._store = store
        self._clock = clock

    async def confirm(
        self,
        member: MemberView,
        group: Group,
        days: Sequence[str],
        legs: Sequence[Leg] = DEFAULT_LEGS,
    ) -> str:
        now = self._clock()
        today = now.date()
        confirmed: list[str] = []
        debited = ZERO

        for token in days:
            day = resolve_day(token, today)
            if day is None or day < today:
                continue
            for leg in legs:
                trip = await self._store.find_trip(group.group_id, day, leg)
                if trip is None:
                    continue

                presence = await self._store.upsert_presence(
                    trip.trip_id, member.member_id, "confirmado", confirmed_at=now,
                )
                if group.pricing_model == "por_trajeto" and group.per_trip_price > 0:
                    if await self._store.find_debit(presence.presence_id) is None:
                        await self._store.add_transaction(
                            group.group_id,
                            member.member_id,
                            "debito",
                            group.per_trip_price,
                            f"Viagem {leg} - {day:%d/%m}",
                            presence_id=presence.presence_id,
                        )
                        debited += group.per_trip_price
                confirmed.append(_label(token, leg, legs))

        log.info(
            "member=%s confirmed %s debited=%.2f", member.member_id, confirmed or "-", debited
        )
        if not confirmed:
            return NO_TRIPS

        reply = f"✅ Confirmado para {', '.join(confirmed)}!"
        if debited > 0:
            reply += f"\n💰 Débito: {_money(debited)}"
        return reply

    async def cancel(
        self,
        member: MemberView,
        group: Group,
        days: Sequence[str],
        legs: Sequence[Leg] = DEFAULT_LEGS,
        is_driver: bool = False,
    ) -> str:
        now = self._clock()
        today = now.date()
        window = timedelta(minutes=group.cancellation_window_minutes)
        cancelled: list[str] = []
        blocked: list[str] = []
        refunded = ZERO

        for token in days:
            day = resolve_day(token, today)
            if day is None or day < today:
                continue
            for leg in legs:
                label = _label(token, leg, legs)

                # Drivers may cancel at any time.
                if day == today and not is_driver:
                    cutoff = at_clock(day, group.departure_for(leg)) - window
                    if now >= cutoff:
                        blocked.append(label)
                        continue

                trip = await self._store.find_trip(group.group_id, day, leg)
                if trip is None:
                    continue

                existing = await self._store.get_presence(trip.trip_id, member.member_id)
                await self._store.upsert_presence(trip.trip_id, member.member_id, "cancelado")

                if group.pricing_model == "por_trajeto" and existing is not None:
                    debit = await self._store.find_debit(existing.presence_id)
                    if debit is not None:
                        await self._store.delete_transaction(debit.transaction_id)
                        refunded += debit.amount
                cancelled.append(label)

        log.info(
            "member=%s cancelled %s blocked %s refunded=%.2f",
            member.member_id, cancelled or "-", blocked or "-", refunded,
        )

        sections = []
        if cancelled:
            section = f"❌ Cancelado para {', '.join(cancelled)}."
            if refunded > 0:
                section += f"\n💸 Estorno: {_money(refunded)}"
            sections.append(section)
        if blocked:
            sections.append(
                f"⚠️ Não dá mais para cancelar {', '.join(blocked)}: "
                f"o prazo é de {group.cancellation_window_minutes} min antes da saída. "
                "Fale com o motorista."
            )
        if not sections:
            return NO_TRIPS
        return "\n\n".join(sections)

    async def register_delay(self, member: MemberView, group: Group, minutes: int) -> str:
        today = self._clock().date()
        trip = await self._store.find_trip(group.group_id, today, "ida")
        if trip is None:
            return NO_TRIP_TODAY

        arrival = add_minutes(trip.departure_time, minutes)
        await self._store.upsert_presence(
            trip.trip_id,
            member.member_id,
            "atrasado",
            delay_time=arrival,
            note=f"Atraso de {minutes} minutos",
        )
        log.info("member=%s late %d min, arrives %s", member.member_id, minutes, arrival)
        return f"⏰ Anotado! Você chegará às {arrival}. Vou avisar o motorista."

    async def status_today(self, group: Group) -> str:
        today = self._clock().date()
        rows = [
            r for r in await self._store.status_rows(group.group_id, today, "ida")
            if r.member_id
        ]
        if not rows:
            return NOTHING_CONFIRMED

        confirmed = [r for r in rows if r.status == "confirmado"]
        delayed = [r for r in rows if r.status == "atrasado"]

        lines = [
            f"📋 *Hoje ({today:%d/%m})*",
            f"🚗 Saída: {rows[0].departure_time[:5]}",
            "",
        ]
        lines += [f"✅ {r.member_name}" for r in confirmed]
        lines += [f"⏰ {r.member_name} ({r.delay_time})" for r in delayed]
        if not confirmed and not delayed:
            lines.append("Ninguém confirmado ainda.")

        riders = len(confirmed) + len(delayed)
        if group.pricing_model == "semanal" and group.weekly_price > 0 and riders > 0:
            lines += ["", f"💰 {_money(group.weekly_price / riders)}/pessoa"]

        return "\n".join(lines)

    async def balance(self, member_id: str) -> Balance:
        return await self._store.member_balance(member_id) or Balance(member_id=member_id)

    @staticmethod
    def format_balance(balance: Balance, name: str = "") -> str:
        who = f", {name}" if name else ""
        if not to_money(balance.total_debits) and not to_money(balance.total_payments):
            return f"✅ Tudo certo{who}! Você não tem débitos registrados."
        if to_money(balance.balance) <= 0:
            return (
                f"✅ Tudo pago{who}!\n"
                f"📈 Pagamentos: {_money(balance.total_payments)}"
            )
        return (
            f"💰 *Seu saldo{who}*\n"
            f"📉 Débitos: {_money(balance.total_debits)}\n"
            f"📈 Pagamentos: {_money(balance.total_payments)}\n"
            f"⚠️ Pendente: {_money(balance.balance)}"
        )

    async def balance_message(self, member: MemberView) -> str:
        return self.format_balance(await self.balance(member.member_id), member.name)

    async def register_payment(
        self,
        group_id: str,
        member_id: str,
        amount: Decimal,
        description: str = "Pagamento",
    ) -> str:
        amount = to_money(amount)
        member = await self._store.get_member(member_id)
        if member is None:
            return MEMBER_NOT_FOUND

        await self._store.add_transaction(group_id, member_id, "pagamento", amount, description)
        balance = await self.balance(member_id)
        log.info(
            "member=%s payment %.2f recorded, pending %.2f", member_id, amount, balance.balance
        )

        reply = f"✅ Pagamento de {_money(amount)} registrado."
        if to_money(balance.balance) <= 0:
            return reply + "\n🎉 Tudo quitado!"
        return reply + f"\n⚠️ Ainda pendente: {_money(balance.balance)}"
