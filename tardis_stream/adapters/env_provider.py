from __future__ import annotations

import logging
import os

from tardis_stream.ports.settings_provider import SettingsProvider

_LOGGER = logging.getLogger(__name__)


class MissingSettingError(ValueError):
    """
    Raised when a logical setting cannot be resolved from the environment.
    """

    def __init__(self, setting_name: str, env_var: str | None = None) -> None:
        super().__init__(setting_name)
        self.setting_name = setting_name
        self.env_var = env_var

    def __str__(self) -> str:
        if self.env_var:
            return f"Setting '{self.setting_name}' is unavailable (set {self.env_var})"
        return f"Setting '{self.setting_name}' is unavailable"


class EnvSettingsProvider(SettingsProvider):
    def __init__(
        self,
        prefix: str = "TARDIS_",
        allowed: dict[str, str] | None = None,
    ) -> None:
        """
        Configure deterministic lookup rules for environment-backed settings.
        """

        if not prefix:
            raise ValueError("Environment prefix must be a non-empty string")
        self._prefix = prefix
        # logical setting name -> environment variable suffix
        base_allowed: dict[str, str] = {
            "machine_ws_url": "MACHINE_WS_URL",
            "api_key": "API_KEY",
        }
        if allowed:
            base_allowed.update(allowed)
        self._allowed = base_allowed

    def env_var(self, setting_name: str) -> str:
        """Name of the environment variable backing a setting."""
        if setting_name not in self._allowed:
            raise MissingSettingError(setting_name)
        return f"{self._prefix}{self._allowed[setting_name]}"

    def get(self, setting_name: str) -> str:
        """Resolve a logical setting name to a concrete environment variable value."""

        env_var = self.env_var(setting_name)
        value = os.environ.get(env_var, "")
        if not value:
            raise MissingSettingError(setting_name, env_var)

        _LOGGER.debug(
            "setting_resolved",
            extra={
                "event": "setting_resolved",
                "setting_name": setting_name,
                "source": "env",
            },
        )
        return value
