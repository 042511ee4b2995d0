"""
PostgREST adapter for CarpoolStore — the hosted database behind the dashboard.

Talks to the store's REST interface (`{url}/rest/v1/<table>`) with the
service-role key.  Upserts use `on_conflict` with merge resolution, so
columns left out of the body keep their stored value.

requests is blocking, so every call runs in a worker thread and the
webhook's event loop keeps serving other messages meanwhile.
"""

import logging
from datetime import date, datetime
from decimal import Decimal

import requests
from fastapi.concurrency import run_in_threadpool

from cajurona.domain.store import (
    ZERO,
    Balance,
    CarpoolStore,
    DuplicateMembershipError,
    Group,
    Member,
    Presence,
    StatusRow,
    StoreError,
    Transaction,
    Trip,
    User,
    to_money,
)

log = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def _in(values: list[str]) -> str:
    quoted = ",".join(f'"{v}"' for v in values)
    return f"in.({quoted})"


def _numeric(amount) -> str:
    # Postgres casts the JSON string to numeric without a float round trip.
    return str(to_money(amount))


class PostgrestCarpoolStore(CarpoolStore):
    """Adapter: hosted store over HTTP."""

    def __init__(self, url: str, key: str, session: requests.Session | None = None):
        self._base = f"{url.rstrip('/')}/rest/v1"
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            }
        )

    def _send(self, method, table, params, body, prefer) -> list[dict]:
        try:
            resp = self.session.request(
                method,
                f"{self._base}/{table}",
                params=params,
                json=body,
                headers={"Prefer": prefer},
            )
        except requests.RequestException as exc:
            raise StoreError(f"{method} {table}: {exc}") from exc

        if not resp.ok:
            try:
                error = resp.json()
            except ValueError:
                error = None
            if not isinstance(error, dict):
                error = {"message": resp.text}
            message = f"{method} {table} ({resp.status_code}): {error.get('message', '')}"
            if table == "membros" and error.get("code") == UNIQUE_VIOLATION:
                raise DuplicateMembershipError(message)
            raise StoreError(message)

        if not resp.content:
            return []
        try:
            data = resp.json(parse_float=Decimal)
        except ValueError as exc:
            raise StoreError(f"{method} {table}: invalid JSON response") from exc
        return data if isinstance(data, list) else [data]

    async def _request(
        self,
        method: str,
        table: str,
        params: dict | None = None,
        body: dict | None = None,
        prefer: str = "return=representation",
    ) -> list[dict]:
        return await run_in_threadpool(self._send, method, table, params, body, prefer)

    async def _first(self, table: str, params: dict) -> dict | None:
        rows = await self._request("GET", table, params={**params, "limit": 1})
        return rows[0] if rows else None

    async def _insert(self, table: str, body: dict) -> dict:
        rows = await self._request("POST", table, body=body)
        if not rows:
            raise StoreError(f"POST {table}: no row returned")
        return rows[0]

    # -- users ---------------------------------------------------------------

    async def find_user_by_phones(self, phones: list[str]) -> User | None:
        if not phones:
            return None
        row = await self._first("usuarios", {"telefone": _in(phones), "order": "created_at"})
        return _user(row) if row else None

    async def get_user(self, user_id: str) -> User | None:
        row = await self._first("usuarios", {"id": f"eq.{user_id}"})
        return _user(row) if row else None

    async def create_user(
        self,
        name: str,
        phone: str,
        password_hash: str = "",
        document_number: str = "",
        document_status: str = "pendente",
    ) -> User:
        return _user(await self._insert("usuarios", {
            "nome": name,
            "telefone": phone,
            "senha_hash": password_hash,
            "matricula": document_number,
            "matricula_status": document_status,
        }))

    async def set_user_whatsapp_id(self, user_id: str, whatsapp_id: str) -> None:
        await self._request(
            "PATCH", "usuarios",
            params={"id": f"eq.{user_id}"},
            body={"whatsapp_id": whatsapp_id},
            prefer="return=minimal",
        )

    # -- groups and members ---------------------------------------------------

    async def get_group(self, group_id: str) -> Group | None:
        row = await self._first("grupos", {"id": f"eq.{group_id}"})
        return _group(row) if row else None

    async def find_group_by_whatsapp_id(self, whatsapp_group_id: str) -> Group | None:
        if not whatsapp_group_id:
            return None
        row = await self._first("grupos", {"whatsapp_group_id": f"eq.{whatsapp_group_id}"})
        return _group(row) if row else None

    async def create_group(
        self,
        name: str,
        driver_id: str | None,
        outbound_time: str,
        return_time: str,
        pricing_model: str,
        weekly_price: Decimal = ZERO,
        per_trip_price: Decimal = ZERO,
        cancellation_window_minutes: int = 30,
    ) -> Group:
        return _group(await self._insert("grupos", {
            "nome": name,
            "motorista_id": driver_id,
            "horario_ida": outbound_time,
            "horario_volta": return_time,
            "modelo_precificacao": pricing_model,
            "valor_semanal": _numeric(weekly_price),
            "valor_trajeto": _numeric(per_trip_price),
            "tempo_limite_cancelamento": cancellation_window_minutes,
        }))

    async def set_group_whatsapp(
        self, group_id: str, whatsapp_group_id: str, invite_link: str | None
    ) -> None:
        await self._request(
            "PATCH", "grupos",
            params={"id": f"eq.{group_id}"},
            body={"whatsapp_group_id": whatsapp_group_id, "invite_link": invite_link},
            prefer="return=minimal",
        )

    async def get_member(self, member_id: str) -> Member | None:
        row = await self._first("membros", {"id": f"eq.{member_id}"})
        return _member(row) if row else None

    async def find_member(self, group_id: str, user_id: str) -> Member | None:
        row = await self._first("membros", {
            "grupo_id": f"eq.{group_id}",
            "usuario_id": f"eq.{user_id}",
        })
        return _member(row) if row else None

    async def find_active_membership(self, user_id: str) -> Member | None:
        row = await self._first("membros", {
            "usuario_id": f"eq.{user_id}",
            "ativo": "is.true",
            "order": "created_at",
        })
        return _member(row) if row else None

    async def create_member(
        self,
        group_id: str,
        user_id: str,
        is_driver: bool = False,
        approval_status: str = "pendente",
        default_days: list[str] | None = None,
    ) -> Member:
        return _member(await self._insert("membros", {
            "grupo_id": group_id,
            "usuario_id": user_id,
            "is_motorista": is_driver,
            "ativo": True,
            "status_aprovacao": approval_status,
            "dias_padrao": default_days or [],
        }))

    # -- trips and presences --------------------------------------------------

    async def create_trip(
        self, group_id: str, day: date, leg: str, departure_time: str
    ) -> Trip:
        return _trip(await self._insert("viagens", {
            "grupo_id": group_id,
            "data": day.isoformat(),
            "tipo": leg,
            "horario_partida": departure_time,
        }))

    async def find_trip(self, group_id: str, day: date, leg: str) -> Trip | None:
        row = await self._first("viagens", {
            "grupo_id": f"eq.{group_id}",
            "data": f"eq.{day.isoformat()}",
            "tipo": f"eq.{leg}",
        })
        return _trip(row) if row else None

    async def get_presence(self, trip_id: str, member_id: str) -> Presence | None:
        row = await self._first("presencas", {
            "viagem_id": f"eq.{trip_id}",
            "membro_id": f"eq.{member_id}",
        })
        return _presence(row) if row else None

    async def upsert_presence(
        self,
        trip_id: str,
        member_id: str,
        status: str,
        confirmed_at: datetime | None = None,
        delay_time: str | None = None,
        note: str | None = None,
    ) -> Presence:
        body = {"viagem_id": trip_id, "membro_id": member_id, "status": status}
        if confirmed_at is not None:
            body["confirmado_em"] = confirmed_at.isoformat()
        if delay_time is not None:
            body["horario_atraso"] = delay_time
        if note is not None:
            body["observacao"] = note
        rows = await self._request(
            "POST", "presencas",
            params={"on_conflict": "viagem_id,membro_id"},
            body=body,
            prefer="resolution=merge-duplicates,return=representation",
        )
        if not rows:
            raise StoreError("upsert presencas: no row returned")
        return _presence(rows[0])

    # -- ledger ----------------------------------------------------------------

    async def find_debit(self, presence_id: str) -> Transaction | None:
        row = await self._first("transacoes", {
            "presenca_id": f"eq.{presence_id}",
            "tipo": "eq.debito",
        })
        return _transaction(row) if row else None

    async def add_transaction(
        self,
        group_id: str,
        member_id: str,
        kind: str,
        amount: Decimal,
        description: str,
        presence_id: str | None = None,
    ) -> Transaction:
        return _transaction(await self._insert("transacoes", {
            "grupo_id": group_id,
            "membro_id": member_id,
            "presenca_id": presence_id,
            "tipo": kind,
            "valor": _numeric(amount),
            "descricao": description,
        }))

    async def delete_transaction(self, transaction_id: str) -> None:
        await self._request(
            "DELETE", "transacoes",
            params={"id": f"eq.{transaction_id}"},
            prefer="return=minimal",
        )

    async def list_transactions(self, member_id: str) -> list[Transaction]:
        rows = await self._request("GET", "transacoes", params={
            "membro_id": f"eq.{member_id}",
            "order": "created_at",
        })
        return [_transaction(r) for r in rows]

    # -- views -----------------------------------------------------------------

    async def status_rows(self, group_id: str, day: date, leg: str) -> list[StatusRow]:
        rows = await self._request("GET", "vw_status_semana", params={
            "grupo_id": f"eq.{group_id}",
            "data": f"eq.{day.isoformat()}",
            "tipo": f"eq.{leg}",
        })
        return [
            StatusRow(
                group_id=r["grupo_id"],
                trip_id=r.get("viagem_id", ""),
                day=date.fromisoformat(r["data"]),
                leg=r["tipo"],
                departure_time=r.get("horario_partida") or "07:00",
                member_id=r.get("membro_id"),
                member_name=r.get("membro_nome"),
                status=r.get("status_presenca"),
                delay_time=r.get("horario_atraso"),
                note=r.get("observacao"),
                weekly_price=to_money(r.get("valor_semanal")),
            )
            for r in rows
        ]

    async def member_balance(self, member_id: str) -> Balance | None:
        row = await self._first("vw_saldo_membros", {"membro_id": f"eq.{member_id}"})
        if not row:
            return None
        return Balance(
            member_id=row["membro_id"],
            total_debits=to_money(row.get("total_debitos")),
            total_payments=to_money(row.get("total_pagamentos")),
            balance=to_money(row.get("saldo")),
        )

    # -- activity log ---------------------------------------------------------

    async def log_activity(
        self,
        member_id: str,
        action: str,
        original_message: str,
        detected_intent: str,
        confidence: float,
    ) -> None:
        await self._request(
            "POST", "logs_atividade",
            body={
                "membro_id": member_id,
                "tipo_acao": action,
                "mensagem_original": original_message,
                "intencao_detectada": detected_intent,
                "confianca": confidence,
            },
            prefer="return=minimal",
        )


def _user(row: dict) -> User:
    return User(
        user_id=row["id"],
        name=row.get("nome") or "",
        phone=row.get("telefone") or "",
        whatsapp_id=row.get("whatsapp_id"),
        password_hash=row.get("senha_hash") or "",
        document_number=row.get("matricula") or "",
        document_status=row.get("matricula_status") or "pendente",
        license_status=row.get("cnh_status") or "nao_enviada",
        neighborhood=row.get("bairro") or "",
    )


def _group(row: dict) -> Group:
    return Group(
        group_id=row["id"],
        name=row.get("nome") or "",
        driver_id=row.get("motorista_id"),
        outbound_time=row.get("horario_ida") or "07:00",
        return_time=row.get("horario_volta") or "18:00",
        pricing_model=row.get("modelo_precificacao") or "semanal",
        weekly_price=to_money(row.get("valor_semanal")),
        per_trip_price=to_money(row.get("valor_trajeto")),
        cancellation_window_minutes=int(row.get("tempo_limite_cancelamento") or 30),
        whatsapp_group_id=row.get("whatsapp_group_id"),
        invite_link=row.get("invite_link"),
    )


def _member(row: dict) -> Member:
    return Member(
        member_id=row["id"],
        group_id=row["grupo_id"],
        user_id=row["usuario_id"],
        is_driver=bool(row.get("is_motorista")),
        active=bool(row.get("ativo", True)),
        approval_status=row.get("status_aprovacao") or "pendente",
        default_days=list(row.get("dias_padrao") or []),
    )


def _trip(row: dict) -> Trip:
    return Trip(
        trip_id=row["id"],
        group_id=row["grupo_id"],
        day=date.fromisoformat(row["data"]),
        leg=row["tipo"],
        departure_time=row.get("horario_partida") or "07:00",
        status=row.get("status") or "agendada",
    )


def _presence(row: dict) -> Presence:
    confirmed = row.get("confirmado_em")
    return Presence(
        presence_id=row["id"],
        trip_id=row["viagem_id"],
        member_id=row["membro_id"],
        status=row["status"],
        confirmed_at=datetime.fromisoformat(confirmed) if confirmed else None,
        delay_time=row.get("horario_atraso"),
        note=row.get("observacao"),
    )


def _transaction(row: dict) -> Transaction:
    return Transaction(
        transaction_id=row["id"],
        group_id=row["grupo_id"],
        member_id=row["membro_id"],
        kind=row["tipo"],
        amount=to_money(row["valor"]),
        description=row.get("descricao") or "",
        presence_id=row.get("presenca_id"),
    )
