# tests/unit/integrations/test_registry.py
from crosslist.core.config import Settings
from crosslist.integrations.platforms.ebay import EbayPlatform
from crosslist.integrations.platforms.reverb import ReverbPlatform
from crosslist.integrations.registry import build_adapter_registry, build_oauth_clients, build_sync_services


def test_platforms_register_only_with_credentials():
    settings = Settings(_env_file=None, REVERB_CLIENT_ID="id", REVERB_CLIENT_SECRET="secret")

    clients = build_oauth_clients(settings)
    registry = build_adapter_registry(settings, clients)

    assert set(clients) == {"reverb"}
    assert set(registry) == {"reverb"}
    assert isinstance(registry["reverb"], ReverbPlatform)
    assert clients["reverb"].token_url == "https://reverb.com/oauth/token"


def test_sandbox_token_urls(settings):
    sandboxed = settings.model_copy(update={"EBAY_SANDBOX_MODE": True, "REVERB_USE_SANDBOX": True})

    clients = build_oauth_clients(sandboxed)

    assert clients["ebay"].token_url == "https://api.sandbox.ebay.com/identity/v1/oauth2/token"
    assert clients["reverb"].token_url == "https://sandbox.reverb.com/oauth/token"


def test_build_sync_services_wires_price_research_platform(settings):
    services = build_sync_services(settings)

    assert isinstance(services.adapters["ebay"], EbayPlatform)
    assert services.price_engine.adapter is services.adapters["ebay"]
    assert services.orchestrator.resolver is services.resolver
    assert services.orchestrator.event_bus is services.event_bus
    assert services.retry_worker.orchestrator is services.orchestrator
    assert services.token_manager.refresh_margin.total_seconds() == settings.TOKEN_REFRESH_MARGIN_MINUTES * 60
