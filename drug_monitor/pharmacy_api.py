"""Client for the gorzdrav preferential medication search.

One GET per drug name.  The response is classified into "available",
"not available" or a failed query; a failed query is never reported as
"not available".  No retries happen here: the monitor owns retry policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

import requests

from .config import PHARMACY_SEARCH_URL, REQUEST_TIMEOUT_SECONDS
from .utils import get_http_session

logger = logging.getLogger(__name__)

# Number of pharmacies carried into a notification.
SAMPLE_SIZE = 3


class QueryFailed(Exception):
    """The availability source could not answer for a drug."""

    def __init__(self, drug_name: str, reason: str) -> None:
        self.drug_name = drug_name
        self.reason = reason
        super().__init__(f"{drug_name}: {reason}")


@dataclass(frozen=True)
class Pharmacy:
    store_name: str
    store_address: str
    store_district: str
    working_time: str
    drug_name: str

    @classmethod
    def from_payload(cls, item: Mapping[str, Any]) -> "Pharmacy":
        return cls(
            store_name=str(item.get("storeName") or ""),
            store_address=str(item.get("storeAddress") or ""),
            store_district=str(item.get("storeDistrict") or ""),
            working_time=str(item.get("storeWorkingTime") or ""),
            drug_name=str(item.get("drugName") or ""),
        )


@dataclass(frozen=True)
class CheckResult:
    drug_name: str
    is_available: bool
    pharmacy_count: Optional[int] = None
    pharmacies: Tuple[Pharmacy, ...] = ()


@dataclass(frozen=True)
class CheckOutcome:
    """Either a CheckResult or the QueryFailed that prevented one."""

    drug_name: str
    result: Optional[CheckResult] = None
    error: Optional[QueryFailed] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


def parse_search_payload(drug_name: str, payload: Any) -> CheckResult:
    """Classify a decoded search response.

    Raises QueryFailed for an explicit ``success: false`` and for any shape
    other than ``{"success": true, "result": [{...}, ...]}``.
    """
    if not isinstance(payload, dict):
        raise QueryFailed(drug_name, "unexpected response format")

    if payload.get("success") is False:
        logger.error(
            "API returned an error for %s: %s (code=%s, requestId=%s)",
            drug_name, payload.get("message"), payload.get("errorCode"), payload.get("requestId"),
        )
        raise QueryFailed(drug_name, f"API error: {payload.get('message')}")

    matches = payload.get("result")
    if not payload.get("success") or not isinstance(matches, list):
        logger.error("Unexpected response format for %s: %r", drug_name, payload)
        raise QueryFailed(drug_name, "unexpected response format")

    if not all(isinstance(m, Mapping) for m in matches):
        logger.error("Unexpected match entries for %s: %r", drug_name, matches[:SAMPLE_SIZE])
        raise QueryFailed(drug_name, "unexpected response format")

    pharmacies = tuple(Pharmacy.from_payload(m) for m in matches[:SAMPLE_SIZE])
    return CheckResult(
        drug_name=drug_name,
        is_available=len(matches) > 0,
        pharmacy_count=len(matches),
        pharmacies=pharmacies,
    )


def fetch_availability(
    drug_name: str,
    *,
    session: Optional[requests.Session] = None,
    url: str = PHARMACY_SEARCH_URL,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
) -> CheckResult:
    """Query the search API for one drug; raise QueryFailed on any failure."""
    close_session = False
    if session is None:
        session = get_http_session()
        close_session = True

    logger.info("Checking drug: %s", drug_name)
    params = {"nom": drug_name.lower(), "isLgot": "true"}
    try:
        resp = session.get(url, params=params, timeout=timeout)
    except requests.Timeout as e:
        logger.error("Timed out querying the API for %s", drug_name)
        raise QueryFailed(drug_name, "timeout") from e
    except requests.RequestException as e:
        logger.error("No response from the API for %s: %s", drug_name, e)
        raise QueryFailed(drug_name, f"network error: {e}") from e
    finally:
        if close_session:
            session.close()

    logger.info("API answered with status %s for %s", resp.status_code, drug_name)
    if resp.status_code >= 400:
        logger.error("API returned HTTP %s for %s: %s", resp.status_code, drug_name, resp.text[:500])
        raise QueryFailed(drug_name, f"HTTP {resp.status_code}")

    try:
        payload = resp.json()
    except ValueError as e:
        logger.error("API returned a non-JSON body for %s", drug_name)
        raise QueryFailed(drug_name, "invalid JSON") from e

    result = parse_search_payload(drug_name, payload)
    if result.is_available:
        logger.info("%s: found in %d pharmacies", drug_name, result.pharmacy_count)
        for i, p in enumerate(result.pharmacies, start=1):
            logger.info("  %d. %s (%s): %s", i, p.store_name, p.store_district, p.drug_name)
    else:
        logger.info("%s: not found", drug_name)
    return result


def check_drug(drug_name: str, *, session: Optional[requests.Session] = None) -> CheckOutcome:
    """Like fetch_availability, but returns the failure as a value."""
    try:
        return CheckOutcome(drug_name, result=fetch_availability(drug_name, session=session))
    except QueryFailed as e:
        return CheckOutcome(drug_name, error=e)


__all__ = [
    "SAMPLE_SIZE",
    "QueryFailed",
    "Pharmacy",
    "CheckResult",
    "CheckOutcome",
    "parse_search_payload",
    "fetch_availability",
    "check_drug",
]
