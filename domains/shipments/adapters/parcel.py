# domains/shipments/adapters/parcel.py
import logging

from ..carriers import detect_parcel_carrier
from ..exceptions import ProviderError
from .base import CarrierAdapter

logger = logging.getLogger(__name__)


class ParcelAdapter(CarrierAdapter):
    """
    택배 번호 패턴(또는 carrier_code)으로 DHL / FedEx / UPS 를 골라 위임.
    12자리 숫자처럼 겹치는 패턴은 PARCEL_CARRIER_PATTERNS 순서를 따른다.
    """

    code = "parcel"

    def __init__(self, *args, resolver=None, **kwargs):
        super().__init__(*args, **kwargs)
        if resolver is None:
            from .provider import get_adapter
            resolver = get_adapter
        self._resolve = resolver

    def carrier_for(self, tracking_number: str, metadata=None) -> str:
        hinted = ((metadata or {}).get("parcel_carrier") or "").lower()
        if hinted:
            return hinted
        detected = detect_parcel_carrier(tracking_number)
        if not detected:
            raise ProviderError(f"Unable to detect parcel carrier for {tracking_number}")
        return detected.lower()

    def track(self, tracking_number, *, metadata=None):
        carrier = self.carrier_for(tracking_number, metadata)
        logger.debug("parcel %s routed to %s", tracking_number, carrier)
        result = self._resolve(carrier).track(tracking_number, metadata=metadata)
        result.metadata.setdefault("parcel_carrier", carrier)
        return result
