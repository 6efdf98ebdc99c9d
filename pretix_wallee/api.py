import base64
import hashlib
import hmac
import time
from typing import Any, Dict, List, Optional

import requests


class WalleeApi():
    """
    Provide convenience wrapper around the wallee web service API.
    Every call is scoped to a space and signed with the application user's
    MAC key.
    """

    class ApiError(RuntimeError):
        def __init__(self, status: int, message: str):
            super().__init__('API error %d: %s' % (status, message))
            self.status = status
            self.message = message

    class VersioningError(ApiError):
        """
            Raised when the submitted entity version is not the stored one,
            i.e. someone else updated the entity in the meantime.
        """

    MAC_VERSION = '1'

    def __init__(self, base_url: str, user_id: str, authentication_key: str, timeout: float = 30):
        self.base_url = base_url
        self.user_id = str(user_id)
        self.authentication_key = authentication_key
        self.timeout = timeout

        self.session = requests.Session()

    def get_mac_headers(self, method: str, path_url: str, timestamp: Optional[int] = None):
        if timestamp is None:
            timestamp = int(time.time())

        secured_data = '|'.join([
            self.MAC_VERSION, self.user_id, str(timestamp), method.upper(), path_url,
        ])
        digest = hmac.new(
            base64.b64decode(self.authentication_key),
            secured_data.encode('utf-8'),
            hashlib.sha512,
        ).digest()

        return {
            'x-mac-version': self.MAC_VERSION,
            'x-mac-userid': self.user_id,
            'x-mac-timestamp': str(timestamp),
            'x-mac-value': base64.b64encode(digest).decode('ascii'),
        }

    def request(self, method: str, path: str, params: Dict[str, Any] = None, json: Any = None):
        """
            Send a signed request and handle things common to the wallee API.
            Returns the decoded JSON body, or None if there is none.
        """
        prepared = requests.Request(
            method=method,
            url=self.base_url + path,
            params=params,
            json=json,
            headers={'accept': 'application/json'},
        ).prepare()
        prepared.headers.update(self.get_mac_headers(method, prepared.path_url))

        response = self.session.send(prepared, timeout=self.timeout)
        if response.status_code == 409:
            raise WalleeApi.VersioningError(409, self._error_message(response))
        if response.status_code >= 400:
            raise WalleeApi.ApiError(response.status_code, self._error_message(response))

        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            return response.json().get('message') or response.reason
        except ValueError:
            return response.reason

    @staticmethod
    def entity_filter(field_name: str, value: Any) -> Dict[str, Any]:
        return {
            'type': 'LEAF',
            'fieldName': field_name,
            'value': value,
            'operator': 'EQUALS',
        }

    def read_transaction(self, space_id: int, transaction_id: int) -> Optional[Dict[str, Any]]:
        try:
            return self.request('GET', '/transaction/read', params={
                'spaceId': space_id,
                'id': transaction_id,
            })
        except WalleeApi.ApiError as e:
            if e.status == 404:
                return None
            raise

    def create_transaction(self, space_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.request('POST', '/transaction/create', params={'spaceId': space_id}, json=payload)

    def confirm_transaction(self, space_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        # The payload carries id and version; a stale version yields 409.
        return self.request('POST', '/transaction/confirm', params={'spaceId': space_id}, json=payload)

    def build_payment_page_url(self, space_id: int, transaction_id: int) -> str:
        return self.request('GET', '/transaction/buildPaymentPageUrl', params={
            'spaceId': space_id,
            'id': transaction_id,
        })

    def complete_online(self, space_id: int, transaction_id: int) -> Dict[str, Any]:
        return self.request('POST', '/transaction-completion/completeOnline', params={
            'spaceId': space_id,
            'id': transaction_id,
        })

    def void_online(self, space_id: int, transaction_id: int) -> Dict[str, Any]:
        return self.request('POST', '/transaction-void/voidOnline', params={
            'spaceId': space_id,
            'id': transaction_id,
        })

    def search(self, service: str, space_id: int, filter: Dict[str, Any], limit: int) -> List[Dict[str, Any]]:
        return self.request('POST', '/%s/search' % service, params={'spaceId': space_id}, json={
            'filter': filter,
            'numberOfEntities': limit,
        }) or []

    def mark_delivery_indication(self, space_id: int, delivery_indication_id: int, suitable: bool):
        action = 'markAsSuitable' if suitable else 'markAsNotSuitable'
        return self.request('POST', '/delivery-indication/%s' % action, params={
            'spaceId': space_id,
            'id': delivery_indication_id,
        })
