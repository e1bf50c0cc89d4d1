"""
Relay boundary: where bundles leave the process.
"""

from abc import ABC, abstractmethod

from searcher.models import Bundle, RelayResponse


class BaseRelay(ABC):
    """
    Abstract bundle relay.

    submit_bundle resolves to an acknowledgment or a rejection; transport
    failures raise RelayError. The caller applies its own timeout.
    """

    name: str = "relay"

    async def connect(self) -> None:
        """Open connections, if any."""
        pass

    async def disconnect(self) -> None:
        """Close connections, if any."""
        pass

    @abstractmethod
    async def submit_bundle(self, bundle: Bundle) -> RelayResponse:
        pass
