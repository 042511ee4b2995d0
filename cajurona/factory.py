import os

from cajurona.adapters.ports import WhatsAppGateway
from cajurona.config import Settings
from cajurona.domain.store import CarpoolStore


def create_store(settings: Settings) -> CarpoolStore:
    """
    Factory: create the store adapter selected by CAJURONA_STORE.

    "sqlite" (the default) opens DB_PATH, creating its directory;
    "supabase" talks to the hosted database.
    """
    if settings.store == "supabase":
        from cajurona.adapters.postgrest_store import PostgrestCarpoolStore

        return PostgrestCarpoolStore(url=settings.supabase_url, key=settings.supabase_key)

    if settings.store == "sqlite":
        from cajurona.adapters.sqlite_store import SqliteCarpoolStore

        directory = os.path.dirname(settings.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        return SqliteCarpoolStore(db_path=settings.db_path)

    raise ValueError(f"Unknown store: {settings.store!r}")


def create_gateway(settings: Settings) -> WhatsAppGateway:
    """Factory: create the WhatsApp adapter selected by WHATSAPP_CHANNEL."""
    if settings.whatsapp_channel == "evolution":
        from cajurona.adapters.evolution_client import EvolutionClient

        return EvolutionClient(
            base_url=settings.evolution_url,
            api_key=settings.evolution_key,
            instance=settings.evolution_instance,
        )

    if settings.whatsapp_channel == "simulator":
        from cajurona.adapters.simulator_whatsapp import SimulatorWhatsAppGateway

        return SimulatorWhatsAppGateway()

    raise ValueError(f"Unknown WhatsApp channel: {settings.whatsapp_channel!r}")
