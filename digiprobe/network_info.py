"""Public IP / ISP lookup with a primary and a fallback provider."""
import json
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from digiprobe.models import NetworkInfo
from digiprobe.probes import HttpTransport

logger = logging.getLogger(__name__)

UNKNOWN_ISP = "Unknown ISP"
LOOKUP_FAILED = "Failed to detect network information"


class IdentityProvider(ABC):
    name = "provider"
    url = ""

    @abstractmethod
    def parse(self, data: dict) -> NetworkInfo:
        ...


class IpWhoIsProvider(IdentityProvider):
    name = "ipwho.is"
    url = "https://ipwho.is/"

    def parse(self, data: dict) -> NetworkInfo:
        if data.get("success") is False:
            raise ValueError(data.get("message") or "ipwho.is lookup failed")
        connection = data.get("connection") or {}
        return NetworkInfo(
            ip=data.get("ip") or "",
            isp=connection.get("isp") or connection.get("org") or UNKNOWN_ISP,
            country=data.get("country") or "",
            region=data.get("region") or "",
            city=data.get("city") or "",
        )


class IpApiProvider(IdentityProvider):
    name = "ipapi.co"
    url = "https://ipapi.co/json/"

    def parse(self, data: dict) -> NetworkInfo:
        if data.get("error"):
            raise ValueError(data.get("reason") or "ipapi.co lookup failed")
        return NetworkInfo(
            ip=data.get("ip") or "",
            isp=data.get("org") or UNKNOWN_ISP,
            country=data.get("country_name") or "",
            region=data.get("region") or "",
            city=data.get("city") or "",
        )


DEFAULT_PROVIDERS = (IpWhoIsProvider(), IpApiProvider())


async def lookup(
    transport: Optional[HttpTransport] = None,
    providers: Optional[List[IdentityProvider]] = None,
) -> NetworkInfo:
    """Try each provider in order; never raises."""
    transport = transport or HttpTransport()
    for provider in providers or DEFAULT_PROVIDERS:
        try:
            body = await transport.get(provider.url)
            info = provider.parse(json.loads(body))
            logger.info("Network identity from %s: %s (%s)", provider.name, info.isp, info.ip)
            return info
        except Exception as exc:
            logger.warning("Network identity lookup via %s failed: %s", provider.name, exc)
    return NetworkInfo(loading=False, error=LOOKUP_FAILED)


class NetworkInfoMonitor:
    """Holds the latest lookup result together with its loading/error state."""

    def __init__(
        self,
        transport: Optional[HttpTransport] = None,
        providers: Optional[List[IdentityProvider]] = None,
    ) -> None:
        self.transport = transport
        self.providers = providers
        self.info = NetworkInfo(loading=True)

    async def refresh(self) -> NetworkInfo:
        self.info = NetworkInfo(
            ip=self.info.ip,
            isp=self.info.isp,
            country=self.info.country,
            region=self.info.region,
            city=self.info.city,
            loading=True,
        )
        self.info = await lookup(self.transport, self.providers)
        return self.info
