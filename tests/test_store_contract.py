"""
CarpoolStore contract tests.

The same contract is verified against:
  - SqliteCarpoolStore     (always runs, :memory:)
  - PostgrestCarpoolStore  (skipped if SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY is not set)
"""

import os
from datetime import date

import pytest

from cajurona.adapters.postgrest_store import PostgrestCarpoolStore
from cajurona.adapters.sqlite_store import SqliteCarpoolStore
from cajurona.domain.store import StoreError
from tests.contracts.carpool_store_contract import CarpoolStoreContract


class TestSqliteCarpoolStore(CarpoolStoreContract):

    def create_store(self):
        return SqliteCarpoolStore(":memory:")

    # -- read failures surface as StoreError ---------------------------------

    @pytest.mark.asyncio
    async def test_missing_balance_view_raises_store_error(self):
        store = self.create_store()
        _, _, _, member, _ = await self._seed(store)
        store._conn.execute("DROP VIEW vw_saldo_membros")

        with pytest.raises(StoreError):
            await store.member_balance(member.member_id)

    @pytest.mark.asyncio
    async def test_missing_status_view_raises_store_error(self):
        store = self.create_store()
        _, _, group, _, _ = await self._seed(store)
        store._conn.execute("DROP VIEW vw_status_semana")

        with pytest.raises(StoreError):
            await store.status_rows(group.group_id, date(2026, 3, 2), "ida")

    @pytest.mark.asyncio
    async def test_missing_table_raises_store_error_on_lookup(self):
        store = self.create_store()
        _, rider, _, member, _ = await self._seed(store)
        store._conn.executescript("DROP VIEW vw_saldo_membros; DROP TABLE transacoes;")

        with pytest.raises(StoreError):
            await store.list_transactions(member.member_id)

        store._conn.executescript("DROP VIEW vw_status_semana; DROP TABLE presencas;")
        # single-row reads go through the same path
        with pytest.raises(StoreError):
            await store.get_presence("missing", member.member_id)
        assert (await store.get_user(rider.user_id)).name == "Ana"


SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")


@pytest.mark.skipif(
    not (SUPABASE_URL and SUPABASE_KEY),
    reason="SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY not set",
)
class TestPostgrestCarpoolStore(CarpoolStoreContract):

    def create_store(self):
        return PostgrestCarpoolStore(url=SUPABASE_URL, key=SUPABASE_KEY)
