# portal_core/supabase_client.py
from supabase import create_client, Client
from portal_core.config import settings, logger
from typing import Dict
import asyncio
from functools import partial

# One client per key type ("anon" / "service")
_supabase_clients: Dict[str, Client] = {}
_init_lock = asyncio.Lock()

async def get_supabase_client(use_service_key: bool = False) -> Client:
    """
    Returns a cached Supabase client, creating it on first use.
    Args:
        use_service_key: If True, the client authenticates with the service role key.
            Storage writes and deletes from the admin portal need it (bucket policies
            only grant anon users read access).
    """
    client_type = "service" if use_service_key else "anon"

    if client_type not in _supabase_clients:
        async with _init_lock:
            if client_type not in _supabase_clients:
                url = settings.SUPABASE_URL
                key = settings.SUPABASE_SERVICE_KEY if use_service_key else settings.SUPABASE_KEY
                if not url or not key:
                    missing_key = "Service Role Key" if use_service_key else "Anon Key"
                    logger.error(f"Supabase URL or {missing_key} not configured. Cannot create storage client.")
                    raise ValueError(f"Supabase URL or {missing_key} not configured")

                logger.info(f"Initializing Supabase client ({client_type} key) for {url}...")
                try:
                    # create_client is synchronous
                    loop = asyncio.get_running_loop()
                    _supabase_clients[client_type] = await loop.run_in_executor(None, partial(create_client, url, key))
                except Exception as e:
                    logger.error(f"Failed to initialize Supabase client ({client_type} key): {e}", exc_info=True)
                    raise RuntimeError(f"Failed to initialize Supabase client: {e}") from e
                logger.info(f"Supabase client ({client_type} key) ready.")

    return _supabase_clients[client_type]


def reset_supabase_clients() -> None:
    """Drops cached clients, e.g. after credentials were rotated."""
    _supabase_clients.clear()
