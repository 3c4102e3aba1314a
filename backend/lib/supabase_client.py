"""
Supabase client for session persistence
"""
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()
load_dotenv('../.env')  # Also try parent directory

logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None


def supabase_configured() -> bool:
    return bool(os.getenv("SUPABASE_URL") and os.getenv("SUPABASE_SERVICE_KEY"))


def get_supabase_client() -> Optional[Client]:
    """
    Get or create the Supabase client singleton.

    Returns None when SUPABASE_URL / SUPABASE_SERVICE_KEY are not set, so
    the backend can fall back to file storage.
    """
    global _supabase_client

    if _supabase_client is None:
        if not supabase_configured():
            return None
        # Service role key: the backend owns the kv table
        _supabase_client = create_client(os.getenv("SUPABASE_URL"), os.getenv("SUPABASE_SERVICE_KEY"))
        logger.info("✅ [Supabase] Client created")

    return _supabase_client


def reset_supabase_client() -> None:
    """Forget the cached client (used when the environment changes)."""
    global _supabase_client
    _supabase_client = None
