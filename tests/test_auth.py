import time
from types import SimpleNamespace

import pytest

from app.auth import supabase_auth
from app.auth.supabase_auth import verify_jwt
from app.pipeline.errors import ErrorCode, PipelineError


def auth_client(get_user):
    return SimpleNamespace(auth=SimpleNamespace(get_user=get_user))


@pytest.fixture
def reset_auth():
    yield
    supabase_auth.set_auth_client(None)


@pytest.mark.asyncio
async def test_valid_token_returns_the_user_id(reset_auth):
    supabase_auth.set_auth_client(auth_client(lambda token: SimpleNamespace(user=SimpleNamespace(id="user-9"))))
    assert await verify_jwt("Bearer tok") == "user-9"


@pytest.mark.asyncio
async def test_missing_bearer_is_unauthorized(reset_auth):
    supabase_auth.set_auth_client(auth_client(lambda token: None))
    with pytest.raises(PipelineError) as exc:
        await verify_jwt(None)
    assert exc.value.status_code == 401


@pytest.mark.asyncio
async def test_rejected_token_is_unauthorized(reset_auth):
    def get_user(token):
        raise RuntimeError("invalid JWT")

    supabase_auth.set_auth_client(auth_client(get_user))
    with pytest.raises(PipelineError) as exc:
        await verify_jwt("Bearer bad")
    assert exc.value.status_code == 401
    assert exc.value.message == "Invalid or expired token"


@pytest.mark.asyncio
async def test_slow_auth_service_times_out(reset_auth):
    supabase_auth.set_auth_client(auth_client(lambda token: time.sleep(0.5)), timeout=0.05)
    with pytest.raises(PipelineError) as exc:
        await verify_jwt("Bearer tok")
    assert exc.value.status_code == 503
    assert exc.value.error_code is ErrorCode.EXTERNAL_API_ERROR
    assert exc.value.message == "Authentication service timed out"
