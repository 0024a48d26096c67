"""Result model for offline license file validation."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OfflineValidationResult(BaseModel):
    """Outcome of checking an offline license document.

    ``errors`` collects every failed check; ``valid`` is true only when it
    is empty.
    """

    model_config = ConfigDict(frozen=True)

    valid: bool
    license: dict[str, Any] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
