"""
Shared HTTP plumbing for Google and Microsoft REST clients.
"""

from typing import Dict, Optional

import requests

from core.errors import ProviderApiError


class ProviderClient:
    """Bearer-token JSON client; subclasses set provider and base_url."""

    provider = "provider"
    base_url = ""
    timeout = 15

    def _request(self, method: str, path: str, access_token: str,
                 params: Optional[Dict] = None, json: Optional[Dict] = None,
                 extra_headers: Optional[Dict] = None) -> Dict:
        """
        Perform one API call.

        Returns:
            Decoded JSON body ({} for empty bodies)

        Raises:
            ProviderApiError: network failure or HTTP status >= 400
        """
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json"
        }
        if extra_headers:
            headers.update(extra_headers)

        try:
            response = requests.request(
                method,
                f"{self.base_url}/{path.lstrip('/')}",
                headers=headers,
                params=params,
                json=json,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise ProviderApiError(self.provider, f"request failed: {e}") from e

        if response.status_code >= 400:
            raise ProviderApiError(
                self.provider,
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code
            )
        if not response.content:
            return {}
        return response.json()
