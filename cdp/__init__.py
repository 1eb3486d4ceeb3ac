"""Chrome DevTools Protocol transport and HTTP surface for the engine."""

from .playwright_gateway import PlaywrightCdpGateway

__all__ = ["PlaywrightCdpGateway"]
