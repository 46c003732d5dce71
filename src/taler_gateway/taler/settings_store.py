"""Persistence of operator-edited Taler server settings."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from taler_gateway.logging_utils import redact
from taler_gateway.taler.config import SERVER_SETTINGS_KEY, TalerServerSettings

logger = logging.getLogger(__name__)


class SettingsRepository(Protocol):
    async def get_setting(self, key: str) -> dict[str, Any] | None: ...

    async def update_setting(self, key: str, value: dict[str, Any]) -> None: ...


class TalerSettingsStore:
    """Reads and writes the ``Taler_Server_Settings`` document.

    When nothing is stored yet, ``defaults`` (usually seeded from the
    environment) are returned instead.
    """

    def __init__(self, repository: SettingsRepository, defaults: TalerServerSettings | None = None):
        self.repository = repository
        self.defaults = defaults or TalerServerSettings()

    async def load(self) -> TalerServerSettings:
        stored = await self.repository.get_setting(SERVER_SETTINGS_KEY)
        if stored is None:
            return TalerServerSettings.from_dict(self.defaults.to_dict())
        return TalerServerSettings.from_dict(stored)

    async def save(self, settings: TalerServerSettings) -> None:
        document = settings.to_dict()
        await self.repository.update_setting(SERVER_SETTINGS_KEY, document)
        logger.info("Taler server settings saved (%d assets)", len(settings.assets))
        logger.debug("Stored Taler server settings: %s", redact(document))
