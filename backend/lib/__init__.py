"""Backend utilities"""
from .logger import get_logger, setup_logging
from .supabase_client import get_supabase_client, supabase_configured

__all__ = ["get_logger", "setup_logging", "get_supabase_client", "supabase_configured"]
