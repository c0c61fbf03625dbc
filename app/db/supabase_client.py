"""Supabase client construction and a helper for running its blocking calls."""

import asyncio
import functools
from typing import Any, Callable, TypeVar

from supabase import create_client, Client

from app.config import Settings

T = TypeVar("T")


def create_service_client(settings: Settings) -> Client:
    """Create the Supabase client using the service role key."""
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise RuntimeError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
        )
    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
    )


def create_anon_client(settings: Settings) -> Client:
    """Create the anon-key client used only to validate user access tokens."""
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_ANON_KEY must be set")
    return create_client(settings.supabase_url, settings.supabase_anon_key)


async def run_blocking(fn: Callable[..., T], *args: Any, timeout: float) -> T:
    """Run a synchronous supabase-py call in the default executor under a deadline.

    Raises:
        asyncio.TimeoutError: if the call does not return within ``timeout``.
    """
    loop = asyncio.get_running_loop()
    return await asyncio.wait_for(
        loop.run_in_executor(None, functools.partial(fn, *args)),
        timeout=timeout,
    )
