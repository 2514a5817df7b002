"""Identifier validation endpoint tests."""

from __future__ import annotations

from typing import Any

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


@pytest.mark.parametrize(
    ("identifier", "valid", "formatted"),
    [
        ("9434765919", True, "943 476 5919"),
        ("943-476-5919", True, "943 476 5919"),
        ("9434765918", False, None),
        ("12345", False, None),
    ],
)
async def test_validate_identifier(
    app_context: dict[str, Any], identifier: str, valid: bool, formatted: str | None
) -> None:
    client: AsyncClient = app_context["client"]  # type: ignore[assignment]
    response = await client.post(
        "/api/v1/identifiers/validate",
        json={"identifier": identifier},
        headers=app_context["headers"],
    )
    assert response.status_code == 200
    assert response.json() == {"valid": valid, "formatted": formatted}
