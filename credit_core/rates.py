"""
Key Rate Client Module

SOAP client for the central bank DailyInfo web service. Provides the base
annual key rate that credit pricing starts from.
"""

from abc import ABC, abstractmethod
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional
from xml.etree import ElementTree
import logging

import httpx

from .errors import RateProviderError

logger = logging.getLogger("credit_core.rates")


SOAP_ACTION = "http://web.cbr.ru/KeyRate"
SOAP_CONTENT_TYPE = "application/soap+xml; charset=utf-8"
LOOKBACK_DAYS = 30

KEY_RATE_REQUEST = """<?xml version="1.0" encoding="utf-8"?>
<soap12:Envelope xmlns:soap12="http://www.w3.org/2003/05/soap-envelope">
    <soap12:Body>
        <KeyRate xmlns="http://web.cbr.ru/">
            <fromDate>{from_date}</fromDate>
            <ToDate>{to_date}</ToDate>
        </KeyRate>
    </soap12:Body>
</soap12:Envelope>"""


class RateProvider(ABC):
    """Source of the base annual interest rate, in percent"""

    @abstractmethod
    def get_annual_rate(self) -> Decimal:
        """Return the current base rate or raise RateProviderError"""
        pass


class FixedRateProvider(RateProvider):
    """Returns a configured rate. Used offline and in tests."""

    def __init__(self, rate):
        self.rate = Decimal(str(rate))

    def get_annual_rate(self) -> Decimal:
        return self.rate


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


def _children(element: ElementTree.Element, name: str):
    return [child for child in element if _local_name(child.tag) == name]


def parse_key_rate(xml_text) -> Decimal:
    """
    Extract the most recent rate from a KeyRate response.

    Rows live at ``diffgram/KeyRate/KR``; the last KR row is the newest.
    """
    try:
        root = ElementTree.fromstring(xml_text)
    except ElementTree.ParseError as e:
        raise RateProviderError(f"Failed to parse XML: {e}") from e

    rows = []
    for diffgram in root.iter():
        if _local_name(diffgram.tag) != "diffgram":
            continue
        for key_rate in _children(diffgram, "KeyRate"):
            rows.extend(_children(key_rate, "KR"))
    if not rows:
        raise RateProviderError("Key rate data not found in response")

    rate_elements = _children(rows[-1], "Rate")
    if not rate_elements:
        raise RateProviderError("Rate element not found")

    rate_text = (rate_elements[0].text or "").strip()
    if not rate_text:
        raise RateProviderError("Rate value is empty")

    try:
        rate = Decimal(rate_text)
    except InvalidOperation as e:
        raise RateProviderError(f"Failed to parse rate value '{rate_text}'") from e
    if not rate.is_finite() or rate < 0:
        raise RateProviderError(f"Invalid rate value: {rate_text}")
    return rate


class KeyRateClient(RateProvider):
    """SOAP 1.2 client for the central bank key rate"""

    def __init__(
        self,
        service_url: str = "https://www.cbr.ru/DailyInfoWebServ/DailyInfo.asmx",
        timeout: float = 30.0,
        today: Callable[[], date] = date.today
    ):
        self.service_url = service_url
        self.timeout = timeout
        self._today = today
        self._client = httpx.Client(timeout=timeout)

    def build_request(self) -> str:
        today = self._today()
        return KEY_RATE_REQUEST.format(
            from_date=(today - timedelta(days=LOOKBACK_DAYS)).isoformat(),
            to_date=today.isoformat()
        )

    def get_annual_rate(self) -> Decimal:
        """Fetch the current key rate; any failure raises RateProviderError"""
        logger.info("Requesting key rate")
        try:
            response = self._client.post(
                self.service_url,
                content=self.build_request().encode("utf-8"),
                headers={"Content-Type": SOAP_CONTENT_TYPE, "SOAPAction": SOAP_ACTION}
            )
        except httpx.HTTPError as e:
            logger.error(f"Key rate request failed: {e}")
            raise RateProviderError(f"Key rate request failed: {e}") from e

        if response.status_code != 200:
            logger.warning(f"Key rate service returned {response.status_code}")
            raise RateProviderError(f"Key rate service returned status {response.status_code}")

        rate = parse_key_rate(response.content)
        logger.info(f"Key rate received: {rate}")
        return rate

    def health_check(self) -> bool:
        """Check that the key rate can currently be fetched"""
        try:
            self.get_annual_rate()
            return True
        except RateProviderError:
            return False

    def close(self):
        """Close the HTTP client"""
        self._client.close()


def create_rate_provider(enabled: bool, service_url: str, timeout: float,
                         fallback_rate) -> RateProvider:
    """Live client when enabled, otherwise a fixed provider returning the fallback"""
    if enabled:
        return KeyRateClient(service_url=service_url, timeout=timeout)
    return FixedRateProvider(fallback_rate)
