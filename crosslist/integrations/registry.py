"""
Builds the platform adapters and OAuth clients once at startup from settings.

A platform is registered only when its application credentials are present;
an adapter that fails to initialise is logged and left out rather than
taking the service down.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional

from crosslist.core.config import Settings
from crosslist.integrations.base import PlatformAdapter
from crosslist.integrations.events import SyncEventBus
from crosslist.integrations.platforms.ebay import EbayPlatform
from crosslist.integrations.platforms.reverb import ReverbPlatform
from crosslist.services.conflict_resolver import ConflictResolver
from crosslist.services.oauth import OAuthClient
from crosslist.services.price_research import PriceResearchEngine
from crosslist.services.sync_orchestrator import AllowedPlatforms, SyncOrchestrator
from crosslist.services.sync_queue import SyncRetryWorker
from crosslist.services.token_manager import TokenLifecycleManager

logger = logging.getLogger(__name__)

EBAY_USER_SCOPES = [
    "https://api.ebay.com/oauth/api_scope/sell.inventory",
    "https://api.ebay.com/oauth/api_scope/sell.fulfillment",
    "https://api.ebay.com/oauth/api_scope/sell.account",
]


def build_oauth_clients(settings: Settings) -> Dict[str, OAuthClient]:
    clients: Dict[str, OAuthClient] = {}

    if settings.EBAY_CLIENT_ID and settings.EBAY_CLIENT_SECRET:
        host = "api.sandbox.ebay.com" if settings.EBAY_SANDBOX_MODE else "api.ebay.com"
        clients["ebay"] = OAuthClient(
            platform="ebay",
            token_url=f"https://{host}/identity/v1/oauth2/token",
            client_id=settings.EBAY_CLIENT_ID,
            client_secret=settings.EBAY_CLIENT_SECRET,
            scopes=EBAY_USER_SCOPES,
            timeout=settings.PLATFORM_REQUEST_TIMEOUT,
        )

    if settings.REVERB_CLIENT_ID and settings.REVERB_CLIENT_SECRET:
        host = "sandbox.reverb.com" if settings.REVERB_USE_SANDBOX else "reverb.com"
        clients["reverb"] = OAuthClient(
            platform="reverb",
            token_url=f"https://{host}/oauth/token",
            client_id=settings.REVERB_CLIENT_ID,
            client_secret=settings.REVERB_CLIENT_SECRET,
            timeout=settings.PLATFORM_REQUEST_TIMEOUT,
        )

    return clients


def build_adapter_registry(settings: Settings, oauth_clients: Dict[str, OAuthClient]) -> Dict[str, PlatformAdapter]:
    """
    Initialize every platform adapter whose OAuth client is configured.
    """
    registry: Dict[str, PlatformAdapter] = {}

    if "ebay" in oauth_clients:
        try:
            registry["ebay"] = EbayPlatform(
                oauth_clients["ebay"],
                sandbox=settings.EBAY_SANDBOX_MODE,
                marketplace_id=settings.EBAY_MARKETPLACE_ID,
                fulfillment_policy_id=settings.EBAY_FULFILLMENT_POLICY_ID,
                payment_policy_id=settings.EBAY_PAYMENT_POLICY_ID,
                return_policy_id=settings.EBAY_RETURN_POLICY_ID,
                merchant_location_key=settings.EBAY_MERCHANT_LOCATION_KEY,
                timeout=settings.PLATFORM_REQUEST_TIMEOUT,
            )
            logger.info("Registered eBay platform adapter")
        except Exception as e:
            logger.error(f"Failed to initialize eBay platform adapter: {e}")

    if "reverb" in oauth_clients:
        try:
            registry["reverb"] = ReverbPlatform(
                oauth_clients["reverb"],
                use_sandbox=settings.REVERB_USE_SANDBOX,
                timeout=settings.PLATFORM_REQUEST_TIMEOUT,
            )
            logger.info("Registered Reverb platform adapter")
        except Exception as e:
            logger.error(f"Failed to initialize Reverb platform adapter: {e}")

    if not registry:
        logger.warning("No platform adapters registered; check marketplace credentials")
    return registry


@dataclass
class SyncServices:
    """Everything a process needs to sync listings and research prices, built once."""
    oauth_clients: Dict[str, OAuthClient]
    adapters: Dict[str, PlatformAdapter]
    event_bus: SyncEventBus
    token_manager: TokenLifecycleManager
    resolver: ConflictResolver
    orchestrator: SyncOrchestrator
    price_engine: PriceResearchEngine
    retry_worker: SyncRetryWorker


def build_sync_services(
    settings: Settings,
    allowed_platforms: Optional[AllowedPlatforms] = None,
) -> SyncServices:
    oauth_clients = build_oauth_clients(settings)
    adapters = build_adapter_registry(settings, oauth_clients)
    event_bus = SyncEventBus()
    token_manager = TokenLifecycleManager(
        oauth_clients,
        refresh_margin=timedelta(minutes=settings.TOKEN_REFRESH_MARGIN_MINUTES),
    )
    resolver = ConflictResolver(
        adapters,
        token_manager,
        event_bus=event_bus,
        timeout=settings.PLATFORM_REQUEST_TIMEOUT,
    )
    orchestrator = SyncOrchestrator(
        adapters,
        token_manager,
        resolver,
        event_bus=event_bus,
        request_timeout=settings.PLATFORM_REQUEST_TIMEOUT,
        allowed_platforms=allowed_platforms,
    )
    price_engine = PriceResearchEngine(
        adapters.get(settings.PRICE_RESEARCH_PLATFORM),
        timeout=settings.PRICE_RESEARCH_TIMEOUT,
        tier_timeout=settings.PLATFORM_REQUEST_TIMEOUT,
        default_limit=settings.PRICE_RESEARCH_DEFAULT_LIMIT,
    )
    retry_worker = SyncRetryWorker(orchestrator, base_delay_seconds=settings.SYNC_RETRY_BASE_DELAY_SECONDS)
    return SyncServices(
        oauth_clients=oauth_clients,
        adapters=adapters,
        event_bus=event_bus,
        token_manager=token_manager,
        resolver=resolver,
        orchestrator=orchestrator,
        price_engine=price_engine,
        retry_worker=retry_worker,
    )
