# Core exports
from . import azure, bitbucket, circleci, generic, github, gitlab, jenkins
from .base import WebhookProviderInterface
from .factory import WebhookProviderRegistry, get_webhook_provider
from .models import (
    BuildStatus,
    CanonicalBuild,
    CanonicalCommit,
    CanonicalEvent,
    CIProvider,
    NormalizeResult,
    SignatureScheme,
    WebhookTarget,
)

__all__ = [
    # Enums
    "CIProvider",
    "BuildStatus",
    "SignatureScheme",
    # Models
    "CanonicalBuild",
    "CanonicalCommit",
    "CanonicalEvent",
    "NormalizeResult",
    "WebhookTarget",
    # Interface
    "WebhookProviderInterface",
    # Factory
    "WebhookProviderRegistry",
    "get_webhook_provider",
]
