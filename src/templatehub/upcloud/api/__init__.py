"""UpCloud API client for server and storage management."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urljoin

import requests

from templatehub.upcloud.errors import OperationCancelled, StateTimeoutError, UpCloudApiError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.upcloud.com/1.3/"

SERVER_STATE_STARTED = "started"
SERVER_STATE_STOPPED = "stopped"
SERVER_STATE_MAINTENANCE = "maintenance"
SERVER_STATE_ERROR = "error"

STORAGE_STATE_ONLINE = "online"
STORAGE_STATE_MAINTENANCE = "maintenance"
STORAGE_STATE_ERROR = "error"

STORAGE_TYPE_DISK = "disk"
STORAGE_TYPE_TEMPLATE = "template"

STORAGE_TIER_MAXIOPS = "maxiops"


@dataclass
class StorageDevice:
    """A storage device attached to a server."""
    uuid: str
    title: str
    type: str
    size: int = 0
    address: str = ""


@dataclass
class IPAddress:
    """An IP address assigned to a server."""
    access: str
    family: str
    address: str = ""


@dataclass
class ServerDetails:
    """Represents an UpCloud server."""
    uuid: str
    title: str
    hostname: str
    zone: str
    state: str
    storage_devices: List[StorageDevice] = field(default_factory=list)
    ip_addresses: List[IPAddress] = field(default_factory=list)

    def first_disk(self) -> Optional[StorageDevice]:
        """Return the first attached device of type ``disk``, if any."""
        for device in self.storage_devices:
            if device.type == STORAGE_TYPE_DISK:
                return device
        return None

    def public_ipv4(self) -> Optional[str]:
        """Return the first public IPv4 address, if one is assigned."""
        for ip in self.ip_addresses:
            if ip.access == "public" and ip.family == "IPv4" and ip.address:
                return ip.address
        return None


@dataclass
class StorageDetails:
    """Represents an UpCloud storage (disk, template, backup...)."""
    uuid: str
    title: str
    zone: str
    state: str
    type: str
    size: int = 0


class UpCloudClient:
    """Client for interacting with the UpCloud API."""

    def __init__(
        self,
        username: str,
        password: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = 30,
        poll_interval: float = 5.0,
    ) -> None:
        """
        Initialize the UpCloud client with API credentials.

        Args:
            username: API sub-account username. Required.
            password: API sub-account password. Required.
            base_url: API root URL. Default: UpCloud API 1.3.
            timeout: Per-request HTTP timeout in seconds. Default: 30.
            poll_interval: Seconds between status polls while waiting. Default: 5.

        Raises:
            ValueError: If credentials are missing or timeouts are invalid.
        """
        if not username or not isinstance(username, str):
            raise ValueError("username must be a non-empty string")
        if not password or not isinstance(password, str):
            raise ValueError("password must be a non-empty string")
        if timeout <= 0:
            raise ValueError("timeout must be a positive integer")
        if poll_interval < 0:
            raise ValueError("poll_interval cannot be negative")

        cleaned = base_url.strip()
        self.base_url = cleaned if cleaned.endswith("/") else f"{cleaned}/"
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.session = requests.Session()
        self.session.auth = (username, password)
        self.session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

    def get_account(self) -> Dict[str, Any]:
        """Return the account details; used to check the credentials."""
        data = self._request("GET", "account")
        return data.get("account", {})

    def get_server_details(self, uuid: str) -> ServerDetails:
        """
        Retrieve details of a server.

        Args:
            uuid: Server UUID. Required.

        Returns:
            ServerDetails with the current state of the server.

        Raises:
            ValueError: If uuid is empty.
            UpCloudApiError: If the lookup fails.
        """
        self._require_uuid(uuid)
        data = self._request("GET", f"server/{uuid}")
        return self._parse_server(data.get("server", {}))

    def create_server(
        self,
        zone: str,
        title: str,
        hostname: str,
        storage_uuid: str,
        storage_size: int,
        storage_title: str,
        login_username: str,
        ssh_keys: List[str],
        core_number: int = 1,
        memory_amount: int = 1024,
    ) -> ServerDetails:
        """
        Create a server with one disk cloned from a template storage.

        The server gets one private IPv4, one public IPv4 and one public IPv6
        address. Password delivery is disabled; access is by SSH key only.

        Args:
            zone: Zone identifier (e.g., 'fi-hel1'). Required.
            title: Server title. Required.
            hostname: Server hostname. Required.
            storage_uuid: Template storage to clone. Required.
            storage_size: Size of the cloned disk in GB. Required.
            storage_title: Title of the cloned disk. Required.
            login_username: Login user created on the server. Required.
            ssh_keys: Public keys authorized for the login user. Required.
            core_number: CPU cores. Default: 1.
            memory_amount: Memory in MB. Default: 1024.

        Returns:
            ServerDetails of the new server (usually still in maintenance).

        Raises:
            ValueError: If required parameters are missing or invalid.
            UpCloudApiError: If server creation fails.
        """
        if not zone or not isinstance(zone, str):
            raise ValueError("zone must be a non-empty string")
        if not title or not isinstance(title, str):
            raise ValueError("title must be a non-empty string")
        self._require_uuid(storage_uuid)
        if not isinstance(storage_size, int) or storage_size <= 0:
            raise ValueError("storage_size must be a positive integer")
        if not ssh_keys:
            raise ValueError("at least one SSH key is required")

        payload = {
            "server": {
                "zone": zone,
                "title": title,
                "hostname": hostname,
                "core_number": str(core_number),
                "memory_amount": str(memory_amount),
                "password_delivery": "none",
                "storage_devices": {
                    "storage_device": [
                        {
                            "action": "clone",
                            "storage": storage_uuid,
                            "title": storage_title,
                            "size": storage_size,
                            "tier": STORAGE_TIER_MAXIOPS,
                        }
                    ]
                },
                "ip_addresses": {
                    "ip_address": [
                        {"access": "private", "family": "IPv4"},
                        {"access": "public", "family": "IPv4"},
                        {"access": "public", "family": "IPv6"},
                    ]
                },
                "login_user": {
                    "username": login_username,
                    "create_password": "no",
                    "ssh_keys": {"ssh_key": list(ssh_keys)},
                },
            }
        }
        data = self._request("POST", "server", json=payload)
        return self._parse_server(data.get("server", {}))

    def stop_server(self, uuid: str, stop_type: str = "soft", timeout: int = 60) -> ServerDetails:
        """Request a server stop; soft stops fall back to hard after ``timeout`` seconds."""
        self._require_uuid(uuid)
        payload = {"stop_server": {"stop_type": stop_type, "timeout": str(timeout)}}
        data = self._request("POST", f"server/{uuid}/stop", json=payload)
        return self._parse_server(data.get("server", {}))

    def delete_server(self, uuid: str) -> None:
        """Delete a stopped server. Attached storages are left in place."""
        self._require_uuid(uuid)
        self._request("DELETE", f"server/{uuid}")

    def get_storage_details(self, uuid: str) -> StorageDetails:
        """Retrieve details of a storage."""
        self._require_uuid(uuid)
        data = self._request("GET", f"storage/{uuid}")
        return self._parse_storage(data.get("storage", {}))

    def delete_storage(self, uuid: str) -> None:
        """Delete a storage (disk or template)."""
        self._require_uuid(uuid)
        self._request("DELETE", f"storage/{uuid}")

    def templatize_storage(self, uuid: str, title: str) -> StorageDetails:
        """
        Create a private template from a disk storage.

        Args:
            uuid: UUID of the disk to templatize. The server using it must be stopped.
            title: Title of the new template. Required.

        Returns:
            StorageDetails of the new template (usually still in maintenance).

        Raises:
            ValueError: If uuid or title is empty.
            UpCloudApiError: If the request fails.
        """
        self._require_uuid(uuid)
        if not title or not isinstance(title, str):
            raise ValueError("title must be a non-empty string")
        data = self._request("POST", f"storage/{uuid}/templatize", json={"storage": {"title": title}})
        return self._parse_storage(data.get("storage", {}))

    def wait_for_server_state(
        self,
        uuid: str,
        desired_state: Optional[str] = None,
        undesired_state: Optional[str] = None,
        timeout: float = 300,
        cancel_event: Optional[threading.Event] = None,
    ) -> ServerDetails:
        """
        Poll a server until it enters ``desired_state`` or leaves ``undesired_state``.

        Raises:
            StateTimeoutError: If the condition is not met within ``timeout`` seconds.
            OperationCancelled: If ``cancel_event`` is set while waiting.
        """
        matches = self._state_matcher(desired_state, undesired_state)
        return self._wait_for(
            lambda: self.get_server_details(uuid),
            matches,
            f'server "{uuid}" {self._describe_state(desired_state, undesired_state)}',
            timeout,
            cancel_event,
        )

    def wait_for_storage_state(
        self,
        uuid: str,
        desired_state: Optional[str] = None,
        undesired_state: Optional[str] = None,
        timeout: float = 300,
        cancel_event: Optional[threading.Event] = None,
    ) -> StorageDetails:
        """Poll a storage until it enters ``desired_state`` or leaves ``undesired_state``."""
        matches = self._state_matcher(desired_state, undesired_state)
        return self._wait_for(
            lambda: self.get_storage_details(uuid),
            matches,
            f'storage "{uuid}" {self._describe_state(desired_state, undesired_state)}',
            timeout,
            cancel_event,
        )

    def _wait_for(
        self,
        fetch: Callable[[], Any],
        matches: Callable[[str], bool],
        description: str,
        timeout: float,
        cancel_event: Optional[threading.Event],
    ) -> Any:
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        deadline = time.monotonic() + timeout
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelled(f"cancelled while waiting for {description}")

            details = fetch()
            if matches(details.state):
                return details

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise StateTimeoutError(
                    f"timed out after {timeout:g}s waiting for {description} "
                    f'(last state: "{details.state}")'
                )

            logger.debug("Waiting for %s, current state: %s", description, details.state)
            delay = min(self.poll_interval, remaining)
            if cancel_event is not None:
                cancel_event.wait(delay)
            else:
                time.sleep(delay)

    @staticmethod
    def _state_matcher(desired_state: Optional[str], undesired_state: Optional[str]) -> Callable[[str], bool]:
        if bool(desired_state) == bool(undesired_state):
            raise ValueError("exactly one of desired_state or undesired_state is required")
        if desired_state:
            return lambda state: state == desired_state
        return lambda state: state != undesired_state

    @staticmethod
    def _describe_state(desired_state: Optional[str], undesired_state: Optional[str]) -> str:
        if desired_state:
            return f'to enter the "{desired_state}" state'
        return f'to exit the "{undesired_state}" state'

    @staticmethod
    def _require_uuid(uuid: str) -> None:
        if not uuid or not isinstance(uuid, str):
            raise ValueError("uuid must be a non-empty string")

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = urljoin(self.base_url, path)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise self._format_http_error(method, path, exc.response) from exc
        except requests.RequestException as exc:
            raise UpCloudApiError(f"{method} {path} failed: {exc}") from exc

        if response.content:
            try:
                return response.json()
            except ValueError as exc:
                raise UpCloudApiError(f"Received malformed JSON from {method} {path}") from exc
        return {}

    @staticmethod
    def _format_http_error(method: str, path: str, response: Optional[requests.Response]) -> UpCloudApiError:
        if response is None:
            return UpCloudApiError(f"{method} {path} failed and no response object was returned")

        error_code = None
        try:
            payload = response.json()
            error = payload.get("error", {}) if isinstance(payload, dict) else {}
            error_code = error.get("error_code")
            detail = error.get("error_message") or payload
        except ValueError:
            detail = response.text or "Unknown error"

        prefix = f"{error_code}: " if error_code else ""
        return UpCloudApiError(
            f"{method} {path} failed with status {response.status_code}: {prefix}{detail}",
            status_code=response.status_code,
            error_code=error_code,
        )

    @staticmethod
    def _parse_server(data: Dict[str, Any]) -> ServerDetails:
        """
        Parse server data from an API response.

        Raises:
            KeyError: If the server UUID is missing.
        """
        devices = (data.get("storage_devices") or {}).get("storage_device", [])
        addresses = (data.get("ip_addresses") or {}).get("ip_address", [])
        return ServerDetails(
            uuid=data["uuid"],
            title=data.get("title", ""),
            hostname=data.get("hostname", ""),
            zone=data.get("zone", ""),
            state=data.get("state", "unknown"),
            storage_devices=[
                StorageDevice(
                    uuid=device["storage"],
                    title=device.get("storage_title", ""),
                    type=device.get("type", ""),
                    size=int(device.get("storage_size", 0)),
                    address=device.get("address", ""),
                )
                for device in devices
            ],
            ip_addresses=[
                IPAddress(
                    access=ip.get("access", ""),
                    family=ip.get("family", ""),
                    address=ip.get("address", ""),
                )
                for ip in addresses
            ],
        )

    @staticmethod
    def _parse_storage(data: Dict[str, Any]) -> StorageDetails:
        return StorageDetails(
            uuid=data["uuid"],
            title=data.get("title", ""),
            zone=data.get("zone", ""),
            state=data.get("state", "unknown"),
            type=data.get("type", ""),
            size=int(data.get("size", 0)),
        )
