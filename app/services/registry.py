"""Wires provider OAuth and data clients from settings."""

from dataclasses import dataclass

from app.core.config import Settings
from app.services.fitbit import FitbitClient, FitbitOAuth
from app.services.healthplanet import MANUAL_REDIRECT_URI, HealthPlanetClient, HealthPlanetOAuth
from app.services.oauth import OAuthClient
from app.services.provider import ProviderClient

PROVIDER_NAMES = ("fitbit", "healthplanet")


@dataclass
class Provider:
    """Everything needed to connect and sync one provider."""

    name: str
    oauth: OAuthClient
    client: ProviderClient
    redirect_uri: str
    manual_code: bool = False

    @property
    def supports_ranges(self) -> bool:
        return self.client.supports_ranges

    async def close(self):
        await self.oauth.close()
        await self.client.close()


def build_providers(settings: Settings) -> dict[str, Provider]:
    base_url = settings.app_base_url.rstrip("/")

    if settings.healthplanet_manual_code:
        healthplanet_redirect = MANUAL_REDIRECT_URI
    else:
        healthplanet_redirect = settings.healthplanet_redirect_uri or f"{base_url}/api/healthplanet/callback"

    return {
        "fitbit": Provider(
            name="fitbit",
            oauth=FitbitOAuth(settings.fitbit_client_id, settings.fitbit_client_secret),
            client=FitbitClient(),
            redirect_uri=f"{base_url}/api/fitbit/callback",
        ),
        "healthplanet": Provider(
            name="healthplanet",
            oauth=HealthPlanetOAuth(settings.healthplanet_client_id, settings.healthplanet_client_secret),
            client=HealthPlanetClient(),
            redirect_uri=healthplanet_redirect,
            manual_code=settings.healthplanet_manual_code,
        ),
    }
