"""Plugin system for pincer.

Chat-network adapters are plugins. Built on pluggy (pytest's plugin
framework); third-party plugins register under the ``pincer`` entry-point
group in their pyproject.toml.

Usage:
    from pincer.plugin import get_plugin_manager

    pm = get_plugin_manager()
    channels = pm.hook.pincer_create_channel(context=ctx)
"""

from __future__ import annotations

import importlib

import pluggy

from pincer.config import get_settings
from pincer.logger import logger
from pincer.plugin.channel import PluginContext
from pincer.plugin.hookspecs import PincerSpec, hookimpl

__all__ = [
    "PluginContext",
    "create_channels",
    "get_plugin_manager",
    "hookimpl",
]

# Built-in plugins: (module_path, class_name, config_key).
# These are opt-in: registered only when [plugins.<key>] enabled = true.
_BUILTIN_PLUGIN_SPECS: list[tuple[str, str, str]] = [
    ("pincer.plugin.console", "ConsoleChannelPlugin", "console"),
]


def get_plugin_manager() -> pluggy.PluginManager:
    """Create and configure the plugin manager.

    Registers enabled built-ins, then discovers entry-point plugins. A plugin
    disabled via ``[plugins.<name>] enabled = false`` is blocked before
    discovery.
    """
    pm = pluggy.PluginManager("pincer")
    pm.add_hookspecs(PincerSpec)

    s = get_settings()
    for name, plugin_cfg in s.plugins.items():
        if not plugin_cfg.enabled:
            pm.set_blocked(name)
            logger.info("Plugin disabled via config", plugin=name)

    for module_path, class_name, config_key in _BUILTIN_PLUGIN_SPECS:
        plugin_cfg = s.plugins.get(config_key)
        if plugin_cfg is None or not plugin_cfg.enabled:
            continue
        try:
            mod = importlib.import_module(module_path)
            pm.register(getattr(mod, class_name)(), name=f"builtin-{config_key}")
            logger.info("Registered built-in plugin", name=config_key)
        except Exception:
            logger.exception("Failed to load built-in plugin", plugin=config_key)

    discovered = pm.load_setuptools_entrypoints("pincer")
    if discovered:
        logger.info("Discovered third-party plugins", count=discovered)

    # Entry points may resolve to plugin classes instead of instances
    for plugin in list(pm.get_plugins()):
        if isinstance(plugin, type):
            plugin_name = pm.get_name(plugin) or plugin.__name__
            pm.unregister(plugin=plugin)
            logger.warning("Unregistered invalid class-based plugin object", plugin=plugin_name)

    plugin_names = [pm.get_name(p) for p in pm.get_plugins()]
    logger.info("Plugin manager ready", plugins=plugin_names)
    return pm


def create_channels(pm: pluggy.PluginManager, context: PluginContext) -> list:
    """Collect channels from every plugin; hooks may return one or a list."""
    channels = []
    for result in pm.hook.pincer_create_channel(context=context):
        if result is None:
            continue
        if isinstance(result, list):
            channels.extend(result)
        else:
            channels.append(result)
    return channels
