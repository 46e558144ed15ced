from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from rich.console import Console

from .base import StoragePlugin

console = Console()


class PluginRegistry:
    def __init__(self) -> None:
        self._plugins: Dict[str, StoragePlugin] = {}

    def register(self, plugin: StoragePlugin) -> None:
        plugin_id = plugin.metadata.id
        if plugin_id in self._plugins:
            raise ValueError(f"Plugin {plugin_id} already registered")
        self._plugins[plugin_id] = plugin

    async def unregister(self, plugin_id: str) -> None:
        plugin = self._plugins.pop(plugin_id, None)
        if plugin is not None:
            await plugin.dispose()

    def get(self, plugin_id: str) -> Optional[StoragePlugin]:
        return self._plugins.get(plugin_id)

    def all(self) -> List[StoragePlugin]:
        return list(self._plugins.values())

    def available(self) -> List[StoragePlugin]:
        """
        Plugins usable right now: no auth needed, or already authenticated.
        """
        return [
            p for p in self._plugins.values()
            if not p.capabilities.requires_auth or p.is_authenticated()
        ]

    async def initialize_all(self) -> None:
        await asyncio.gather(*(p.initialize() for p in self._plugins.values()))
        console.print(f"[cyan]Initialized {len(self._plugins)} storage plugin(s)[/cyan]")

    async def dispose_all(self) -> None:
        await asyncio.gather(*(p.dispose() for p in self._plugins.values()))
        self._plugins.clear()
