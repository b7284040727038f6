"""SettingsProvider Port Interface.

Contract: Retrieve connection settings and credentials by logical name;
no persistence here.
"""

from __future__ import annotations

from typing import Protocol


class SettingsProvider(Protocol):
    def get(self, setting_name: str) -> str: ...

    """
    Retrieve a setting value using its logical name, e.g. "machine_ws_url"
    or "api_key". Keeps server addresses and credentials out of code.
    """
