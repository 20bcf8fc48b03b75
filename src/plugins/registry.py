"""
Plugin Registry - Discovery and registration of reconciler plugins.

Maps each resource kind to the single reconciler that owns it, and tracks
which reconcilers watch other kinds.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from plugins.reconcilers.base import ReconcilerPlugin

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "rabbitmq_operator.reconcilers"


class PluginRegistry:
    """
    Central registry for reconciler plugins.

    Handles discovery, registration, and lookup by resource kind.
    """

    def __init__(self, enabled: Optional[List[str]] = None):
        # Empty or None means every reconciler is enabled
        self._enabled = set(enabled or [])

        self._reconcilers: Dict[str, ReconcilerPlugin] = {}
        self._reconciler_info: Dict[str, Dict[str, Any]] = {}

        # Mapping from resource kind to reconciler name
        self._kind_to_reconciler: Dict[str, str] = {}

    def register_reconciler_plugin(
        self, plugin: Union[ReconcilerPlugin, type]
    ) -> Optional[ReconcilerPlugin]:
        """
        Register a reconciler plugin class or instance.

        Args:
            plugin: A ReconcilerPlugin subclass or an instance of one

        Returns:
            The registered instance, or None if the reconciler is disabled

        Raises:
            ValueError: If a resource kind is already claimed by another reconciler
        """
        instance = plugin() if isinstance(plugin, type) else plugin
        name = instance.name
        resource_types = instance.resource_types

        if self._enabled and name not in self._enabled:
            logger.info(f"Skipping disabled reconciler plugin: {name}")
            return None

        if name in self._reconcilers:
            logger.warning(f"Overwriting existing reconciler plugin: {name}")

        # Check for resource kind conflicts
        for kind in resource_types:
            existing = self._kind_to_reconciler.get(kind)
            if existing and existing != name:
                raise ValueError(
                    f"Resource kind '{kind}' is already claimed by "
                    f"reconciler '{existing}'. Cannot register '{name}'."
                )

        self._reconcilers[name] = instance
        self._reconciler_info[name] = {
            "name": name,
            "resource_types": list(resource_types),
            "watches": list(instance.watches),
        }

        for kind in resource_types:
            self._kind_to_reconciler[kind] = name

        logger.info(
            f"Registered reconciler plugin: {name} "
            f"(resource types: {', '.join(resource_types)})"
        )
        return instance

    def get_reconciler_plugin(self, name: str) -> ReconcilerPlugin:
        """
        Get a registered reconciler by name.

        Raises:
            ValueError: If the reconciler name is not registered
        """
        if name not in self._reconcilers:
            available = ", ".join(self._reconcilers.keys()) or "none"
            raise ValueError(
                f"Unknown reconciler plugin: {name}. "
                f"Available reconcilers: {available}"
            )
        return self._reconcilers[name]

    def list_reconciler_plugins(self) -> List[str]:
        """List all registered reconciler plugin names."""
        return list(self._reconcilers.keys())

    def list_resource_types(self) -> List[str]:
        """List every resource kind with a reconciler."""
        return list(self._kind_to_reconciler.keys())

    def has_reconciler_for_resource_type(self, kind: str) -> bool:
        """Check if any reconciler handles the given kind."""
        return kind in self._kind_to_reconciler

    def get_reconciler_for_resource_type(self, kind: str) -> Optional[ReconcilerPlugin]:
        """
        Get the reconciler for a resource kind.

        Returns:
            A ReconcilerPlugin instance, or None if no reconciler handles it
        """
        name = self._kind_to_reconciler.get(kind)
        if name is None:
            return None
        return self._reconcilers[name]

    def get_watchers(self, kind: str) -> List[Tuple[ReconcilerPlugin, Callable]]:
        """Reconcilers (with their mapper) that watch changes to ``kind``."""
        watchers = []
        for reconciler in self._reconcilers.values():
            mapper = reconciler.watches.get(kind)
            if mapper is not None:
                watchers.append((reconciler, mapper))
        return watchers

    def watched_kinds(self) -> List[str]:
        """Every kind at least one registered reconciler watches."""
        kinds = set()
        for reconciler in self._reconcilers.values():
            kinds.update(reconciler.watches)
        return sorted(kinds)

    def get_reconciler_plugin_info(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Get information about a registered reconciler plugin.

        Returns:
            Dictionary with 'name', 'resource_types' and 'watches', or None
        """
        return self._reconciler_info.get(name)


# Global registry instance
_registry: Optional[PluginRegistry] = None


def get_registry(enabled: Optional[List[str]] = None) -> PluginRegistry:
    """Get the global plugin registry singleton."""
    global _registry
    if _registry is None:
        _registry = PluginRegistry(enabled=enabled)
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_plugins(registry: Optional[PluginRegistry] = None) -> PluginRegistry:
    """
    Register the built-in RabbitMQ reconcilers and discover third-party
    reconcilers via entry points.
    """
    registry = registry or get_registry()

    from plugins.reconcilers.rabbitmq import builtin_reconcilers

    for reconciler in builtin_reconcilers():
        registry.register_reconciler_plugin(reconciler)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            reconciler_class = ep.load()
        except ImportError as e:
            logger.warning(f"Could not load reconciler plugin {ep.name}: {e}")
            continue
        registry.register_reconciler_plugin(reconciler_class)

    return registry
