"""HTTP client of the remote sync endpoint.

The endpoint speaks a small JSON protocol:

- ``GET ?action=get`` returns the full state, or ``{"error": "..."}``.
- ``POST {"action": "sync", ...state}`` overwrites the remote store and returns
  ``{"result": "success"}`` or ``{"result": "error", "error": "..."}``.

"""
import logging
from typing import Any, Dict, Optional

import requests

from ..status import status


class RemoteClient:
    """Talks to the remote sync endpoint.

    Args:
        url: Endpoint url.
        timeout: Request timeout in seconds. None uses the transport default.
        session: Optional requests session.
    """

    def __init__(self, url: str, timeout: Optional[float] = None, session: Optional[requests.Session] = None) -> None:
        if not url:
            raise status.RemoteNotConfiguredException
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, **kwargs: Any) -> requests.Response:
        try:
            response = self.session.request(method, self.url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.RequestException as ex:
            raise status.ServiceUnavailableException(f'{method} {self.url} failed: {ex}') from ex
        return response

    def fetch(self) -> Dict[str, Any]:
        """Fetch the full remote state.

        Returns:
            dict: The payload. Slices the remote store did not send are absent.

        Raises:
            status.ServiceUnavailableException: On transport failure or a non-2xx status.
            status.RemotePayloadInvalidException: If the body is not a JSON object.
            status.RemoteErrorException: If the endpoint answered with an error marker.
        """
        response = self._request('GET', params={'action': 'get'})
        try:
            data = response.json()
        except ValueError as ex:
            raise status.RemotePayloadInvalidException(f'Response is not JSON: {ex}') from ex

        if not isinstance(data, dict):
            raise status.RemotePayloadInvalidException(f'Expected an object, got {type(data).__name__}.')
        if data.get('error'):
            raise status.RemoteErrorException(str(data['error']))

        logging.debug(f'Fetched remote state with keys: {", ".join(sorted(data))}')
        return data

    def push(self, payload: Dict[str, Any]) -> None:
        """Send the full state to the remote store.

        A 2xx response whose body cannot be read counts as success.

        Raises:
            status.ServiceUnavailableException: On transport failure or a non-2xx status.
            status.RemoteErrorException: If the endpoint answered with an error marker.
        """
        body = {'action': 'sync'}
        body.update(payload)
        response = self._request('POST', json=body)

        try:
            data = response.json()
        except ValueError:
            logging.debug('Push response is not JSON, assuming success.')
            return

        if isinstance(data, dict) and data.get('result') == 'error':
            raise status.RemoteErrorException(str(data.get('error', '')))
        logging.debug(f'Push response: {data}')
