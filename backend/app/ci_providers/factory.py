import logging
from typing import Dict, Type

from .base import WebhookProviderInterface
from .models import CIProvider

logger = logging.getLogger(__name__)


class WebhookProviderRegistry:
    """
    Registry and factory for webhook provider adapters.
    """

    _providers: Dict[CIProvider, Type[WebhookProviderInterface]] = {}

    @classmethod
    def register(cls, provider_type: CIProvider):
        """
        Decorator to register a webhook provider adapter.

        Args:
            provider_type: The CIProvider enum value

        Returns:
            Decorator function
        """

        def decorator(provider_class: Type[WebhookProviderInterface]):
            cls._providers[provider_type] = provider_class
            logger.debug(f"Registered webhook provider: {provider_type.value}")
            return provider_class

        return decorator

    @classmethod
    def get(cls, provider_type: CIProvider) -> WebhookProviderInterface:
        """
        Get an adapter instance by type.

        Raises:
            ValueError: If provider type is not registered
        """
        if provider_type not in cls._providers:
            raise ValueError(
                f"Webhook provider '{provider_type.value}' is not registered. "
                f"Available: {[p.value for p in cls._providers.keys()]}"
            )
        return cls._providers[provider_type]()

    @classmethod
    def get_all_types(cls) -> list[CIProvider]:
        """Get list of all registered provider types."""
        return list(cls._providers.keys())

    @classmethod
    def is_registered(cls, provider_type: CIProvider) -> bool:
        return provider_type in cls._providers


def get_webhook_provider(provider_type: CIProvider) -> WebhookProviderInterface:
    """Get a webhook provider adapter by type."""
    return WebhookProviderRegistry.get(provider_type)
