"""Provider collaborators - the cloud management API the engine calls into."""

from __future__ import annotations

import logging
import time
from functools import cached_property
from typing import TYPE_CHECKING, Any, Protocol, Self

import requests
from pydantic import BaseModel, ConfigDict, SecretStr

from arm_provisioner.core.errors import (
    ConflictError,
    ProviderError,
    ProviderValidationError,
    TransientError,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS = frozenset({408, 429, 500, 502, 503, 504})
# ARM reports these with 409 but they clear up on their own.
_TRANSIENT_CODES = frozenset({"AnotherOperationInProgress", "RetryableError", "TooManyRequests"})
_VALIDATION_STATUS = frozenset({400, 422})
_CONFLICT_STATUS = frozenset({409, 412})
_FAILED_STATES = frozenset({"Failed", "Canceled"})


class Provider(Protocol):
    """Create/read/update/delete by resource id and API version.

    Every call takes a caller-supplied ``timeout`` (seconds).
    """

    def get(self, resource_id: str, api_version: str, *, timeout: float) -> dict[str, Any] | None:
        """Return the resource document, or ``None`` if it does not exist."""

    def put(
        self,
        resource_id: str,
        api_version: str,
        body: Mapping[str, Any],
        *,
        timeout: float,
        if_match: str | None = None,
    ) -> dict[str, Any]:
        """Create or update the resource and return its settled document."""

    def delete(self, resource_id: str, api_version: str, *, timeout: float) -> bool:
        """Delete the resource. Returns ``False`` if it was already gone."""


class TokenAuth(BaseModel):
    """Pre-issued bearer token for the management endpoint."""

    access_token: SecretStr


def _error_details(resp: requests.Response) -> tuple[str | None, str]:
    try:
        payload = resp.json()
    except ValueError:
        return None, resp.text
    err = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(err, dict):
        return err.get("code"), err.get("message") or resp.text
    return None, resp.text


def _retry_after(resp: requests.Response) -> float | None:
    value = resp.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _raise_for_status(resp: requests.Response, what: str) -> None:
    """Map an ARM error response onto the provider error hierarchy."""
    status = resp.status_code
    if status < 400:
        return
    code, message = _error_details(resp)
    text = f"{what} failed ({status}{' ' + code if code else ''}): {message}"
    if status in _TRANSIENT_STATUS or code in _TRANSIENT_CODES:
        raise TransientError(text, status_code=status, code=code, retry_after=_retry_after(resp))
    if status in _CONFLICT_STATUS:
        raise ConflictError(text, status_code=status, code=code)
    if status in _VALIDATION_STATUS:
        raise ProviderValidationError(text, status_code=status, code=code)
    raise ProviderError(text, status_code=status, code=code)


class ArmProvider(BaseModel):
    """Azure Resource Manager REST client.

    Credential handling is out of scope: provide a pre-issued bearer token, or
    inject an already-authenticated session.

    Examples:
        # Token from `az account get-access-token`
        provider = ArmProvider(auth=TokenAuth(access_token="eyJ0..."))

        # Injected session (tests, custom auth adapters)
        provider = ArmProvider.from_session(session)
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    endpoint: str = "https://management.azure.com"
    auth: TokenAuth | None = None
    verify_ssl: bool = True
    poll_interval: float = 5.0
    operation_timeout: float = 1800.0

    # Injected session (for custom auth / testing)
    _injected_session: requests.Session | None = None

    @classmethod
    def from_session(cls, session: requests.Session, **kwargs: Any) -> Self:
        """Create a provider with an injected, already-authenticated session."""
        provider = cls(**kwargs)
        provider._injected_session = session
        return provider

    @cached_property
    def session(self) -> requests.Session:
        """Get the HTTP session."""
        if self._injected_session is not None:
            return self._injected_session

        if self.auth is None:
            raise ValueError(
                "Either provide auth, or use ArmProvider.from_session() to inject a session"
            )

        session = requests.Session()
        session.verify = self.verify_ssl
        session.headers["Authorization"] = f"Bearer {self.auth.access_token.get_secret_value()}"
        return session

    def _url(self, target: str) -> str:
        if target.startswith(("http://", "https://")):
            return target
        return f"{self.endpoint.rstrip('/')}{target}"

    def _send(
        self,
        method: str,
        target: str,
        *,
        timeout: float,
        api_version: str | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        params = {"api-version": api_version} if api_version else None
        try:
            return self.session.request(
                method, self._url(target), params=params, timeout=timeout, **kwargs
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TransientError(f"{method} {target}: {exc}") from exc

    def _sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def _await_operation(
        self, resp: requests.Response, resource_id: str, *, timeout: float
    ) -> None:
        """Poll an asynchronous operation (201/202 + operation header) to completion."""
        url = resp.headers.get("Azure-AsyncOperation") or resp.headers.get("Location")
        if resp.status_code not in (201, 202) or not url:
            return

        deadline = time.monotonic() + self.operation_timeout
        delay = _retry_after(resp) or self.poll_interval
        while True:
            if time.monotonic() >= deadline:
                raise TransientError(f"Timed out waiting for operation on {resource_id}")
            self._sleep(delay)
            poll = self._send("GET", url, timeout=timeout)
            _raise_for_status(poll, f"Polling {resource_id}")
            delay = _retry_after(poll) or self.poll_interval
            if poll.status_code == 202:
                continue
            try:
                body = poll.json()
            except ValueError:
                body = {}
            status = body.get("status") if isinstance(body, dict) else None
            if status is None or status == "Succeeded":
                return
            if status in _FAILED_STATES:
                err = body.get("error") or {}
                raise ProviderError(
                    f"Operation on {resource_id} {status.lower()}: {err.get('message', '')}",
                    code=err.get("code"),
                )
            logger.debug("Operation on %s still %s", resource_id, status)

    def _settle(
        self, resource_id: str, api_version: str, doc: dict[str, Any], *, timeout: float
    ) -> dict[str, Any]:
        """Wait for ``properties.provisioningState`` to reach a terminal value."""
        deadline = time.monotonic() + self.operation_timeout
        while True:
            state = (doc.get("properties") or {}).get("provisioningState")
            if state is None or state == "Succeeded":
                return doc
            if state in _FAILED_STATES:
                raise ProviderError(f"Provisioning of {resource_id} ended in state {state}")
            if time.monotonic() >= deadline:
                raise TransientError(f"Timed out waiting for {resource_id} (state {state})")
            logger.debug("Waiting for %s (provisioningState=%s)", resource_id, state)
            self._sleep(self.poll_interval)
            fresh = self.get(resource_id, api_version, timeout=timeout)
            if fresh is None:
                raise ProviderError(f"{resource_id} disappeared while provisioning")
            doc = fresh

    def get(self, resource_id: str, api_version: str, *, timeout: float) -> dict[str, Any] | None:
        resp = self._send("GET", resource_id, api_version=api_version, timeout=timeout)
        if resp.status_code == 404:
            return None
        _raise_for_status(resp, f"GET {resource_id}")
        return resp.json()  # type: ignore[no-any-return]

    def put(
        self,
        resource_id: str,
        api_version: str,
        body: Mapping[str, Any],
        *,
        timeout: float,
        if_match: str | None = None,
    ) -> dict[str, Any]:
        headers = {"If-Match": if_match} if if_match else {}
        logger.debug("PUT %s (api-version=%s)", resource_id, api_version)
        resp = self._send(
            "PUT",
            resource_id,
            api_version=api_version,
            timeout=timeout,
            json=dict(body),
            headers=headers,
        )
        _raise_for_status(resp, f"PUT {resource_id}")
        self._await_operation(resp, resource_id, timeout=timeout)

        doc: dict[str, Any] | None
        if resp.status_code == 202 or not resp.content:
            doc = self.get(resource_id, api_version, timeout=timeout)
            if doc is None:
                raise ProviderError(f"{resource_id} not found after PUT")
        else:
            doc = resp.json()
        return self._settle(resource_id, api_version, doc, timeout=timeout)

    def delete(self, resource_id: str, api_version: str, *, timeout: float) -> bool:
        logger.debug("DELETE %s (api-version=%s)", resource_id, api_version)
        resp = self._send("DELETE", resource_id, api_version=api_version, timeout=timeout)
        if resp.status_code == 404:
            return False
        _raise_for_status(resp, f"DELETE {resource_id}")
        self._await_operation(resp, resource_id, timeout=timeout)
        return resp.status_code != 204
