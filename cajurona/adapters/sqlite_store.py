"""
SQLite adapter for CarpoolStore.

Mirrors the hosted schema closely enough to run the bot locally.
Use ":memory:" for tests, a file path for production.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal

from cajurona.domain.store import (
    Balance,
    CarpoolStore,
    DuplicateMembershipError,
    Group,
    Member,
    Presence,
    StatusRow,
    StoreError,
    Transaction,
    ZERO,
    Trip,
    User,
    to_money,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS usuarios (
    id              TEXT PRIMARY KEY,
    nome            TEXT NOT NULL,
    telefone        TEXT NOT NULL UNIQUE,
    whatsapp_id     TEXT,
    senha_hash      TEXT NOT NULL DEFAULT '',
    matricula       TEXT NOT NULL DEFAULT '',
    matricula_status TEXT NOT NULL DEFAULT 'pendente'
        CHECK (matricula_status IN ('pendente', 'aprovado', 'rejeitado', 'nao_enviada')),
    cnh_status      TEXT NOT NULL DEFAULT 'nao_enviada'
        CHECK (cnh_status IN ('pendente', 'aprovado', 'rejeitado', 'nao_enviada')),
    bairro          TEXT NOT NULL DEFAULT '',
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS grupos (
    id              TEXT PRIMARY KEY,
    nome            TEXT NOT NULL,
    motorista_id    TEXT REFERENCES usuarios(id),
    horario_ida     TEXT NOT NULL DEFAULT '07:00',
    horario_volta   TEXT NOT NULL DEFAULT '18:00',
    modelo_precificacao TEXT NOT NULL DEFAULT 'semanal'
        CHECK (modelo_precificacao IN ('semanal', 'por_trajeto')),
    valor_semanal   NUMERIC NOT NULL DEFAULT 0,
    valor_trajeto   NUMERIC NOT NULL DEFAULT 0,
    tempo_limite_cancelamento INTEGER NOT NULL DEFAULT 30,
    whatsapp_group_id TEXT UNIQUE,
    invite_link     TEXT,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS membros (
    id              TEXT PRIMARY KEY,
    grupo_id        TEXT NOT NULL REFERENCES grupos(id),
    usuario_id      TEXT NOT NULL REFERENCES usuarios(id),
    is_motorista    INTEGER NOT NULL DEFAULT 0,
    ativo           INTEGER NOT NULL DEFAULT 1,
    status_aprovacao TEXT NOT NULL DEFAULT 'pendente'
        CHECK (status_aprovacao IN ('pendente', 'aprovado', 'rejeitado')),
    dias_padrao     TEXT NOT NULL DEFAULT '[]',
    created_at      TEXT NOT NULL,
    UNIQUE (grupo_id, usuario_id)
);

CREATE UNIQUE INDEX IF NOT EXISTS membros_um_motorista_por_grupo
    ON membros (grupo_id) WHERE is_motorista = 1;

CREATE UNIQUE INDEX IF NOT EXISTS membros_motorista_ativo_por_usuario
    ON membros (usuario_id) WHERE is_motorista = 1 AND ativo = 1;

CREATE TABLE IF NOT EXISTS viagens (
    id              TEXT PRIMARY KEY,
    grupo_id        TEXT NOT NULL REFERENCES grupos(id),
    data            TEXT NOT NULL,
    tipo            TEXT NOT NULL CHECK (tipo IN ('ida', 'volta')),
    horario_partida TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'agendada',
    UNIQUE (grupo_id, data, tipo)
);

CREATE TABLE IF NOT EXISTS presencas (
    id              TEXT PRIMARY KEY,
    viagem_id       TEXT NOT NULL REFERENCES viagens(id),
    membro_id       TEXT NOT NULL REFERENCES membros(id),
    status          TEXT NOT NULL CHECK (status IN ('confirmado', 'cancelado', 'atrasado')),
    confirmado_em   TEXT,
    horario_atraso  TEXT,
    observacao      TEXT,
    UNIQUE (viagem_id, membro_id)
);

CREATE TABLE IF NOT EXISTS transacoes (
    id              TEXT PRIMARY KEY,
    grupo_id        TEXT NOT NULL REFERENCES grupos(id),
    membro_id       TEXT NOT NULL REFERENCES membros(id),
    presenca_id     TEXT REFERENCES presencas(id),
    tipo            TEXT NOT NULL CHECK (tipo IN ('debito', 'pagamento')),
    valor           NUMERIC NOT NULL,
    descricao       TEXT NOT NULL DEFAULT '',
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS logs_atividade (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    membro_id       TEXT,
    tipo_acao       TEXT NOT NULL,
    mensagem_original TEXT,
    intencao_detectada TEXT,
    confianca       REAL,
    created_at      TEXT NOT NULL
);

CREATE VIEW IF NOT EXISTS vw_status_semana AS
SELECT
    v.grupo_id,
    v.id              AS viagem_id,
    v.data,
    v.tipo,
    v.horario_partida,
    p.membro_id,
    u.nome            AS membro_nome,
    p.status          AS status_presenca,
    p.horario_atraso,
    p.observacao,
    g.valor_semanal
FROM viagens v
JOIN grupos g ON g.id = v.grupo_id
LEFT JOIN presencas p ON p.viagem_id = v.id
LEFT JOIN membros m ON m.id = p.membro_id
LEFT JOIN usuarios u ON u.id = m.usuario_id;

CREATE VIEW IF NOT EXISTS vw_saldo_membros AS
SELECT
    m.id              AS membro_id,
    m.grupo_id,
    ROUND(COALESCE(SUM(CASE WHEN t.tipo = 'debito' THEN t.valor END), 0), 2)    AS total_debitos,
    ROUND(COALESCE(SUM(CASE WHEN t.tipo = 'pagamento' THEN t.valor END), 0), 2) AS total_pagamentos,
    ROUND(COALESCE(SUM(CASE WHEN t.tipo = 'debito' THEN t.valor ELSE -t.valor END), 0), 2) AS saldo
FROM membros m
JOIN transacoes t ON t.membro_id = m.id
GROUP BY m.id, m.grupo_id;
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _parse_dt(s: str | None) -> datetime | None:
    return datetime.fromisoformat(s) if s else None


def _cents(amount) -> str:
    # NUMERIC affinity stores "12.50" as a number; sums are rounded in the views.
    return str(to_money(amount))


class SqliteCarpoolStore(CarpoolStore):

    def __init__(self, db_path: str = "cajurona.db"):
        # The web server may serve requests from a worker thread.
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(_SCHEMA)

    @contextmanager
    def _write(self):
        try:
            yield self._conn
            self._conn.commit()
        except sqlite3.IntegrityError as exc:
            self._conn.rollback()
            msg = str(exc)
            if "membros.grupo_id" in msg and "membros.usuario_id" in msg:
                raise DuplicateMembershipError(msg) from exc
            raise StoreError(msg) from exc
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise StoreError(str(exc)) from exc

    @contextmanager
    def _read(self):
        try:
            yield self._conn
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc

    def _one(self, sql: str, params: tuple = ()):
        with self._read() as conn:
            return conn.execute(sql, params).fetchone()

    def _all(self, sql: str, params: tuple = ()):
        with self._read() as conn:
            return conn.execute(sql, params).fetchall()

    # -- users ---------------------------------------------------------------

    async def find_user_by_phones(self, phones: list[str]) -> User | None:
        if not phones:
            return None
        marks = ", ".join("?" for _ in phones)
        row = self._one(
            f"SELECT * FROM usuarios WHERE telefone IN ({marks}) ORDER BY created_at LIMIT 1",
            tuple(phones),
        )
        return self._row_to_user(row) if row else None

    async def get_user(self, user_id: str) -> User | None:
        row = self._one("SELECT * FROM usuarios WHERE id = ?", (user_id,))
        return self._row_to_user(row) if row else None

    async def create_user(
        self,
        name: str,
        phone: str,
        password_hash: str = "",
        document_number: str = "",
        document_status: str = "pendente",
    ) -> User:
        user_id = _new_id()
        with self._write() as conn:
            conn.execute(
                "INSERT INTO usuarios"
                " (id, nome, telefone, senha_hash, matricula, matricula_status, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (user_id, name, phone, password_hash, document_number, document_status, _now()),
            )
        return await self.get_user(user_id)

    async def set_user_whatsapp_id(self, user_id: str, whatsapp_id: str) -> None:
        with self._write() as conn:
            conn.execute(
                "UPDATE usuarios SET whatsapp_id = ? WHERE id = ?", (whatsapp_id, user_id)
            )

    @staticmethod
    def _row_to_user(row) -> User:
        return User(
            user_id=row["id"],
            name=row["nome"],
            phone=row["telefone"],
            whatsapp_id=row["whatsapp_id"],
            password_hash=row["senha_hash"],
            document_number=row["matricula"],
            document_status=row["matricula_status"],
            license_status=row["cnh_status"],
            neighborhood=row["bairro"],
        )

    # -- groups and members ---------------------------------------------------

    async def get_group(self, group_id: str) -> Group | None:
        row = self._one("SELECT * FROM grupos WHERE id = ?", (group_id,))
        return self._row_to_group(row) if row else None

    async def find_group_by_whatsapp_id(self, whatsapp_group_id: str) -> Group | None:
        if not whatsapp_group_id:
            return None
        row = self._one(
            "SELECT * FROM grupos WHERE whatsapp_group_id = ?", (whatsapp_group_id,)
        )
        return self._row_to_group(row) if row else None

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
        group_id = _new_id()
        with self._write() as conn:
            conn.execute(
                "INSERT INTO grupos"
                " (id, nome, motorista_id, horario_ida, horario_volta, modelo_precificacao,"
                "  valor_semanal, valor_trajeto, tempo_limite_cancelamento, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (group_id, name, driver_id, outbound_time, return_time, pricing_model,
                 _cents(weekly_price), _cents(per_trip_price), cancellation_window_minutes,
                 _now()),
            )
        return await self.get_group(group_id)

    async def set_group_whatsapp(
        self, group_id: str, whatsapp_group_id: str, invite_link: str | None
    ) -> None:
        with self._write() as conn:
            conn.execute(
                "UPDATE grupos SET whatsapp_group_id = ?, invite_link = ? WHERE id = ?",
                (whatsapp_group_id, invite_link, group_id),
            )

    @staticmethod
    def _row_to_group(row) -> Group:
        return Group(
            group_id=row["id"],
            name=row["nome"],
            driver_id=row["motorista_id"],
            outbound_time=row["horario_ida"],
            return_time=row["horario_volta"],
            pricing_model=row["modelo_precificacao"],
            weekly_price=to_money(row["valor_semanal"]),
            per_trip_price=to_money(row["valor_trajeto"]),
            cancellation_window_minutes=int(row["tempo_limite_cancelamento"]),
            whatsapp_group_id=row["whatsapp_group_id"],
            invite_link=row["invite_link"],
        )

    async def get_member(self, member_id: str) -> Member | None:
        row = self._one("SELECT * FROM membros WHERE id = ?", (member_id,))
        return self._row_to_member(row) if row else None

    async def find_member(self, group_id: str, user_id: str) -> Member | None:
        row = self._one(
            "SELECT * FROM membros WHERE grupo_id = ? AND usuario_id = ?",
            (group_id, user_id),
        )
        return self._row_to_member(row) if row else None

    async def find_active_membership(self, user_id: str) -> Member | None:
        row = self._one(
            "SELECT * FROM membros WHERE usuario_id = ? AND ativo = 1"
            " ORDER BY created_at LIMIT 1",
            (user_id,),
        )
        return self._row_to_member(row) if row else None

    async def create_member(
        self,
        group_id: str,
        user_id: str,
        is_driver: bool = False,
        approval_status: str = "pendente",
        default_days: list[str] | None = None,
    ) -> Member:
        member_id = _new_id()
        with self._write() as conn:
            conn.execute(
                "INSERT INTO membros"
                " (id, grupo_id, usuario_id, is_motorista, ativo, status_aprovacao,"
                "  dias_padrao, created_at)"
                " VALUES (?, ?, ?, ?, 1, ?, ?, ?)",
                (member_id, group_id, user_id, int(is_driver), approval_status,
                 json.dumps(default_days or []), _now()),
            )
        return await self.get_member(member_id)

    @staticmethod
    def _row_to_member(row) -> Member:
        return Member(
            member_id=row["id"],
            group_id=row["grupo_id"],
            user_id=row["usuario_id"],
            is_driver=bool(row["is_motorista"]),
            active=bool(row["ativo"]),
            approval_status=row["status_aprovacao"],
            default_days=json.loads(row["dias_padrao"] or "[]"),
        )

    # -- trips and presences --------------------------------------------------

    async def create_trip(
        self, group_id: str, day: date, leg: str, departure_time: str
    ) -> Trip:
        trip_id = _new_id()
        with self._write() as conn:
            conn.execute(
                "INSERT INTO viagens (id, grupo_id, data, tipo, horario_partida)"
                " VALUES (?, ?, ?, ?, ?)",
                (trip_id, group_id, day.isoformat(), leg, departure_time),
            )
        row = self._one("SELECT * FROM viagens WHERE id = ?", (trip_id,))
        return self._row_to_trip(row)

    async def find_trip(self, group_id: str, day: date, leg: str) -> Trip | None:
        row = self._one(
            "SELECT * FROM viagens WHERE grupo_id = ? AND data = ? AND tipo = ?",
            (group_id, day.isoformat(), leg),
        )
        return self._row_to_trip(row) if row else None

    @staticmethod
    def _row_to_trip(row) -> Trip:
        return Trip(
            trip_id=row["id"],
            group_id=row["grupo_id"],
            day=date.fromisoformat(row["data"]),
            leg=row["tipo"],
            departure_time=row["horario_partida"],
            status=row["status"],
        )

    async def get_presence(self, trip_id: str, member_id: str) -> Presence | None:
        row = self._one(
            "SELECT * FROM presencas WHERE viagem_id = ? AND membro_id = ?",
            (trip_id, member_id),
        )
        return self._row_to_presence(row) if row else None

    async def upsert_presence(
        self,
        trip_id: str,
        member_id: str,
        status: str,
        confirmed_at: datetime | None = None,
        delay_time: str | None = None,
        note: str | None = None,
    ) -> Presence:
        with self._write() as conn:
            conn.execute(
                "INSERT INTO presencas"
                " (id, viagem_id, membro_id, status, confirmado_em, horario_atraso, observacao)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)"
                " ON CONFLICT (viagem_id, membro_id) DO UPDATE SET"
                "  status = excluded.status,"
                "  confirmado_em = COALESCE(excluded.confirmado_em, presencas.confirmado_em),"
                "  horario_atraso = COALESCE(excluded.horario_atraso, presencas.horario_atraso),"
                "  observacao = COALESCE(excluded.observacao, presencas.observacao)",
                (_new_id(), trip_id, member_id, status,
                 confirmed_at.isoformat() if confirmed_at else None, delay_time, note),
            )
        return await self.get_presence(trip_id, member_id)

    @staticmethod
    def _row_to_presence(row) -> Presence:
        return Presence(
            presence_id=row["id"],
            trip_id=row["viagem_id"],
            member_id=row["membro_id"],
            status=row["status"],
            confirmed_at=_parse_dt(row["confirmado_em"]),
            delay_time=row["horario_atraso"],
            note=row["observacao"],
        )

    # -- ledger ----------------------------------------------------------------

    async def find_debit(self, presence_id: str) -> Transaction | None:
        row = self._one(
            "SELECT * FROM transacoes WHERE presenca_id = ? AND tipo = 'debito'",
            (presence_id,),
        )
        return self._row_to_transaction(row) if row else None

    async def add_transaction(
        self,
        group_id: str,
        member_id: str,
        kind: str,
        amount: Decimal,
        description: str,
        presence_id: str | None = None,
    ) -> Transaction:
        transaction_id = _new_id()
        with self._write() as conn:
            conn.execute(
                "INSERT INTO transacoes"
                " (id, grupo_id, membro_id, presenca_id, tipo, valor, descricao, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (transaction_id, group_id, member_id, presence_id, kind, _cents(amount),
                 description, _now()),
            )
        row = self._one("SELECT * FROM transacoes WHERE id = ?", (transaction_id,))
        return self._row_to_transaction(row)

    async def delete_transaction(self, transaction_id: str) -> None:
        with self._write() as conn:
            conn.execute("DELETE FROM transacoes WHERE id = ?", (transaction_id,))

    async def list_transactions(self, member_id: str) -> list[Transaction]:
        rows = self._all(
            "SELECT * FROM transacoes WHERE membro_id = ? ORDER BY created_at",
            (member_id,),
        )
        return [self._row_to_transaction(r) for r in rows]

    @staticmethod
    def _row_to_transaction(row) -> Transaction:
        return Transaction(
            transaction_id=row["id"],
            group_id=row["grupo_id"],
            member_id=row["membro_id"],
            kind=row["tipo"],
            amount=to_money(row["valor"]),
            description=row["descricao"],
            presence_id=row["presenca_id"],
        )

    # -- views -----------------------------------------------------------------

    async def status_rows(self, group_id: str, day: date, leg: str) -> list[StatusRow]:
        rows = self._all(
            "SELECT * FROM vw_status_semana WHERE grupo_id = ? AND data = ? AND tipo = ?",
            (group_id, day.isoformat(), leg),
        )
        return [
            StatusRow(
                group_id=r["grupo_id"],
                trip_id=r["viagem_id"],
                day=date.fromisoformat(r["data"]),
                leg=r["tipo"],
                departure_time=r["horario_partida"],
                member_id=r["membro_id"],
                member_name=r["membro_nome"],
                status=r["status_presenca"],
                delay_time=r["horario_atraso"],
                note=r["observacao"],
                weekly_price=to_money(r["valor_semanal"]),
            )
            for r in rows
        ]

    async def member_balance(self, member_id: str) -> Balance | None:
        row = self._one("SELECT * FROM vw_saldo_membros WHERE membro_id = ?", (member_id,))
        if not row:
            return None
        return Balance(
            member_id=row["membro_id"],
            total_debits=to_money(row["total_debitos"]),
            total_payments=to_money(row["total_pagamentos"]),
            balance=to_money(row["saldo"]),
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
        with self._write() as conn:
            conn.execute(
                "INSERT INTO logs_atividade"
                " (membro_id, tipo_acao, mensagem_original, intencao_detectada, confianca,"
                "  created_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (member_id, action, original_message, detected_intent, confidence, _now()),
            )
