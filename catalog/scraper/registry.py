from __future__ import annotations

import logging
import threading

from catalog.errors import DuplicatePluginError, NoPluginFound
from catalog.scraper.types import Plugin

log = logging.getLogger(__name__)


class PluginRegistry:
    """Name -> plugin map with lookup by supported source type.

    When several plugins declare the same source type, the one registered
    first is returned. Registration order is therefore part of the
    configuration.
    """

    def __init__(self) -> None:
        self._plugins: dict[str, Plugin] = {}
        self._lock = threading.RLock()

    def register(self, plugin: Plugin) -> None:
        with self._lock:
            if plugin.name in self._plugins:
                raise DuplicatePluginError(f"plugin {plugin.name!r} already registered")
            self._plugins[plugin.name] = plugin
        log.info("plugin-register name=%s types=%s", plugin.name, ",".join(plugin.supported_types))

    def get_plugin(self, name: str) -> Plugin:
        with self._lock:
            plugin = self._plugins.get(name)
        if plugin is None:
            raise NoPluginFound(f"no plugin named {name!r}")
        return plugin

    def get_plugin_for_type(self, source_type: str) -> Plugin:
        with self._lock:
            for plugin in self._plugins.values():
                if source_type in plugin.supported_types:
                    return plugin
        raise NoPluginFound(f"no plugin found for source type {source_type!r}")

    def list_plugins(self) -> list[Plugin]:
        with self._lock:
            return list(self._plugins.values())

    def list_supported_types(self) -> list[str]:
        seen: dict[str, None] = {}
        for plugin in self.list_plugins():
            for t in plugin.supported_types:
                seen.setdefault(t, None)
        return list(seen)

    def __len__(self) -> int:
        with self._lock:
            return len(self._plugins)


__all__ = ["PluginRegistry"]
