"""
Provider Registry - Lookup of provider adapters by provider id.

Supports two registration methods:
1. Manual registration (register_provider)
2. Entry-points (for plugin provider packs)
"""

from __future__ import annotations

import logging
import threading
from importlib.metadata import entry_points
from typing import Callable, Dict, List, Optional

from node_sdk.base import BaseAdapter


logger = logging.getLogger(__name__)

# Entry point group for provider packs
PROVIDER_ENTRY_POINT = "flowmesh.providers"


class ProviderRegistry:
    """
    Central registry of provider adapters.

    Usage:
        registry = ProviderRegistry()
        registry.register(GoogleAdapter())
        adapter = registry.get("google")
    """

    def __init__(self) -> None:
        self._adapters: Dict[str, BaseAdapter] = {}
        self._discovered = False

    def register(self, adapter: BaseAdapter, provider: Optional[str] = None) -> None:
        """Register an adapter under its provider id (or an override)."""
        provider = provider or adapter.provider
        if not provider:
            raise ValueError(f"{type(adapter).__name__} has no provider id")
        self._adapters[provider] = adapter
        logger.debug("Registered provider adapter: %s", provider)

    def get(self, provider: str) -> Optional[BaseAdapter]:
        return self._adapters.get(provider)

    def is_registered(self, provider: str) -> bool:
        return provider in self._adapters

    def providers(self) -> List[str]:
        return list(self._adapters.keys())

    def discover_entry_points(self, force: bool = False) -> int:
        """
        Discover provider packs via entry points.

        Entry points are declared in pyproject.toml:

            [project.entry-points."flowmesh.providers"]
            crm = "crm_pack:create_adapter"

        Each entry point is called and must return a BaseAdapter instance
        (or a list of them).

        Returns:
            Number of adapters registered
        """
        if self._discovered and not force:
            return 0

        count = 0
        for ep in entry_points(group=PROVIDER_ENTRY_POINT):
            try:
                factory: Callable = ep.load()
                result = factory()
                adapters = result if isinstance(result, (list, tuple)) else [result]
                for adapter in adapters:
                    self.register(adapter)
                    count += 1
                logger.info("Discovered provider pack: %s", ep.name)
            except Exception as e:
                logger.error("Failed to load provider pack '%s': %s", ep.name, e)

        self._discovered = True
        return count


def create_default_registry() -> ProviderRegistry:
    """Registry holding the built-in adapters."""
    # Import here to keep adapter modules off the package import path
    from .email import EmailAdapter
    from .flow import FlowAdapter
    from .google import GoogleAdapter
    from .openai import OpenAIAdapter
    from .transform import TransformAdapter
    from .webhook import WebhookAdapter

    registry = ProviderRegistry()
    for adapter in (
        GoogleAdapter(),
        OpenAIAdapter(),
        EmailAdapter(),
        WebhookAdapter(),
        TransformAdapter(),
        FlowAdapter(),
    ):
        registry.register(adapter)
    return registry


# Global registry instance
_registry: Optional[ProviderRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> ProviderRegistry:
    """Get or create the global provider registry."""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = create_default_registry()
            _registry.discover_entry_points()
        return _registry


def reset_registry() -> None:
    """Reset the global registry (useful for testing)."""
    global _registry
    with _registry_lock:
        _registry = None


def get_provider_adapter(provider: str) -> Optional[BaseAdapter]:
    """Adapter for a provider id, None when unknown."""
    return get_registry().get(provider)


def register_provider(adapter: BaseAdapter, provider: Optional[str] = None) -> None:
    get_registry().register(adapter, provider)


__all__ = [
    "PROVIDER_ENTRY_POINT",
    "ProviderRegistry",
    "create_default_registry",
    "get_provider_adapter",
    "get_registry",
    "register_provider",
    "reset_registry",
]
