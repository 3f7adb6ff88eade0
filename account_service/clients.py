"""
Sibling Service Client Module

REST clients for the Customer and KYC services. Timeouts and transport
failures surface as ServiceUnavailable so callers can retry; they are never
read as "customer unknown" or "not verified".
"""

from typing import Any, Dict, Optional

import httpx

from .errors import ServiceUnavailable
from .logging_config import get_logger


logger = get_logger("account_service.clients")


class _ServiceClient:
    """Shared request plumbing for sibling service clients"""

    service_name = "service"

    def __init__(self, base_url: str, timeout: float = 5.0,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def _get(self, path: str, bearer_token: Optional[str] = None) -> httpx.Response:
        headers = {}
        if bearer_token:
            headers["Authorization"] = f"Bearer {bearer_token}"

        try:
            return self._client.get(path, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning(f"{self.service_name} timed out on GET {path}: {e}")
            raise ServiceUnavailable(self.service_name, f"timed out after {self.timeout}s")
        except httpx.TransportError as e:
            logger.error(f"{self.service_name} connection failed on GET {path}: {e}")
            raise ServiceUnavailable(self.service_name, str(e) or e.__class__.__name__)

    def _unexpected(self, response: httpx.Response) -> ServiceUnavailable:
        logger.warning(
            f"{self.service_name} returned {response.status_code} for {response.request.url}"
        )
        return ServiceUnavailable(self.service_name, f"unexpected status {response.status_code}")

    @staticmethod
    def _json(response: httpx.Response, service: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            raise ServiceUnavailable(service, "response body is not JSON")
        if not isinstance(data, dict):
            raise ServiceUnavailable(service, "response body is not a JSON object")
        return data

    def close(self) -> None:
        self._client.close()


class CustomerServiceClient(_ServiceClient):
    """Client for the customer service"""

    service_name = "customer-service"

    def customer_exists(self, customer_id: int, bearer_token: Optional[str] = None) -> bool:
        """Check if the customer service knows a customer"""
        response = self._get(f"/api/customers/{customer_id}", bearer_token)
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise self._unexpected(response)

    def get_customer_id_by_user_id(self, user_id: int,
                                   bearer_token: Optional[str] = None) -> Optional[int]:
        """
        Resolve the customer owned by an authenticated user.

        Returns:
            The customer id, or None when the user has no customer profile
        """
        response = self._get(f"/api/customers/user/{user_id}", bearer_token)
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise self._unexpected(response)

        data = self._json(response, self.service_name)
        customer_id = data.get("customerId", data.get("id"))
        if customer_id is None:
            raise ServiceUnavailable(self.service_name, "response carries no customer id")
        return int(customer_id)


class KycServiceClient(_ServiceClient):
    """Client for the KYC service"""

    service_name = "kyc-service"
    VERIFIED_STATUSES = ("VERIFIED", "APPROVED", "COMPLETED")

    def get_kyc_status(self, customer_id: int, bearer_token: Optional[str] = None) -> Optional[str]:
        """KYC status of a customer, or None when no KYC record exists"""
        response = self._get(f"/api/kyc/customer/{customer_id}/status", bearer_token)
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise self._unexpected(response)

        data = self._json(response, self.service_name)
        status = data.get("status") or data.get("kycStatus")
        return str(status).upper() if status else None
