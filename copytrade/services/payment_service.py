"""Payment destination per method (manual crypto transfer or UPI)."""

from dataclasses import dataclass
from typing import Optional

from copytrade.config import get_settings
from copytrade.services.pricing_service import PaymentMethod

settings = get_settings()


@dataclass
class PaymentDestination:
    method: PaymentMethod
    network: Optional[str]
    address: Optional[str]
    wallet_app_link: Optional[str] = None


class PaymentDestinationProvider:
    def destination_for(self, method: PaymentMethod) -> PaymentDestination:
        raise NotImplementedError


class ManualDestinationProvider(PaymentDestinationProvider):
    def destination_for(self, method: PaymentMethod) -> PaymentDestination:
        link = settings.USDT_WALLET_APP_LINK or None
        if method is PaymentMethod.USDT_ERC20:
            return PaymentDestination(method, "ERC20", settings.USDT_ERC20_ADDRESS or None, link)
        if method is PaymentMethod.USDT_TRC20:
            return PaymentDestination(method, "TRC20", settings.USDT_TRC20_ADDRESS or None, link)
        return PaymentDestination(method, None, settings.UPI_ID or None)


def get_destination_provider() -> PaymentDestinationProvider:
    return ManualDestinationProvider()
