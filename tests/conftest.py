from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from src.config import Settings
from src.main import app


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        openai_api_key="sk-test",
        leonardo_api_key="leo-test",
        openai_base_url="https://vision.test/v1",
        leonardo_base_url="https://provider.test/api/rest/v1",
        style_reference_location=str(tmp_path / "missing-style.png"),
        upload_relay_url=None,
    )


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
