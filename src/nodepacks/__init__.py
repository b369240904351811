"""
Node Packs - Built-in provider adapters.

Providers:
- google: Gmail and Google Sheets
- openai: chat, embeddings and images
- email: transactional email (Resend)
- webhook: trigger pass-through and generic HTTP requests
- transform: local JSON/text/array operations
- flow: iterator, aggregator, router and filter

Adapters are looked up by provider id through the registry.
"""

from .registry import (
    PROVIDER_ENTRY_POINT,
    ProviderRegistry,
    create_default_registry,
    get_provider_adapter,
    get_registry,
    register_provider,
    reset_registry,
)

__all__ = [
    "PROVIDER_ENTRY_POINT",
    "ProviderRegistry",
    "create_default_registry",
    "get_provider_adapter",
    "get_registry",
    "register_provider",
    "reset_registry",
]
