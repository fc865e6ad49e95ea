# domains/shipments/adapters/__init__.py
from .base import CarrierAdapter, ClientCredentialsToken, ProviderTrackingResult
from .dhl import DHLAdapter
from .fedex import FedExAdapter
from .parcel import ParcelAdapter
from .provider import adapter_for_shipment, get_adapter, register_adapter, reset_adapters
from .shipsgo import ShipsGoAirAdapter, ShipsGoMaritimeAdapter
from .ups import UPSAdapter

# 필요한 경우 여기서 다른 어댑터를 매핑해 주세요.
for _cls in (DHLAdapter, FedExAdapter, UPSAdapter, ShipsGoMaritimeAdapter, ShipsGoAirAdapter, ParcelAdapter):
    register_adapter(_cls.code, _cls)


__all__ = [
    "CarrierAdapter",
    "ClientCredentialsToken",
    "ProviderTrackingResult",
    "DHLAdapter",
    "FedExAdapter",
    "UPSAdapter",
    "ShipsGoMaritimeAdapter",
    "ShipsGoAirAdapter",
    "ParcelAdapter",
    "adapter_for_shipment",
    "get_adapter",
    "register_adapter",
    "reset_adapters",
]
