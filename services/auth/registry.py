"""Build the provider registry from environment configuration."""

from __future__ import annotations

from typing import Optional

import httpx

from core.auth.constants import REDIRECT_PROVIDER_IDS
from core.logging import get_logger
from core.settings import ChooserSettings
from services.auth.native import NativeIdTokenProvider, load_native_config
from services.auth.providers import OAuthRedirectProvider, ProviderRegistry, load_oauth_config
from services.auth.saml import SamlAssertionProvider, load_saml_config

logger = get_logger(__name__)


def build_provider_registry(
    settings: ChooserSettings,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> ProviderRegistry:
    """Register every provider whose credentials are present."""
    registry = ProviderRegistry()
    timeout = httpx.Timeout(settings.provider_timeout_seconds, connect=settings.provider_connect_timeout_seconds)
    for provider_id in REDIRECT_PROVIDER_IDS:
        config = load_oauth_config(provider_id)
        if not config.enabled:
            logger.debug("Provider %s has no client credentials; skipping.", provider_id)
            continue
        registry.register(OAuthRedirectProvider(config, timeout=timeout, transport=transport))

    saml_config = load_saml_config()
    if saml_config.enabled:
        registry.register(SamlAssertionProvider(saml_config))

    native_config = load_native_config()
    if native_config.enabled:
        registry.register(NativeIdTokenProvider(native_config))

    logger.info("Identity providers enabled: %s", ", ".join(sorted(registry)) or "none")
    return registry


__all__ = ["build_provider_registry"]
