from fastapi import Request
from supabase import AsyncClient, acreate_client


from app.config.config import settings


async def create_supabase_client() -> AsyncClient:
    """Create a standard Supabase client (anon key).

    This is suitable for user-facing auth lookups and respects RLS.
    """
    supabase: AsyncClient = await acreate_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_PUBLISHABLE_KEY,
    )
    return supabase


async def create_supabase_admin_client() -> AsyncClient:
    """Create an admin Supabase client (service role key).

    The dispatch pipeline writes across riders, orders and wallets, so the
    services run with this client.
    """
    supabase: AsyncClient = await acreate_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_SECRET_KEY,
    )
    return supabase


def get_supabase_client(request: Request) -> AsyncClient:
    """FastAPI dependency returning the client created at startup."""
    return request.app.state.supabase


def get_supabase_admin_client(request: Request) -> AsyncClient:
    """FastAPI dependency returning the admin client created at startup."""
    return request.app.state.supabase_admin
