import copy
import itertools
import threading

import pytest

from templatehub.upcloud.api import (
    SERVER_STATE_MAINTENANCE,
    SERVER_STATE_STARTED,
    SERVER_STATE_STOPPED,
    STORAGE_STATE_ONLINE,
    STORAGE_TYPE_DISK,
    STORAGE_TYPE_TEMPLATE,
    IPAddress,
    ServerDetails,
    StorageDetails,
    StorageDevice,
)
from templatehub.upcloud.config import BuilderConfig
from templatehub.upcloud.errors import OperationCancelled, StateTimeoutError, UpCloudApiError
from templatehub.upcloud.state import RunContext

SOURCE_TEMPLATE = "01000000-0000-4000-8000-000030200200"


class RecordingUi:
    """Ui that keeps every message for assertions."""

    def __init__(self):
        self.messages = []
        self.errors = []

    def say(self, message):
        self.messages.append(message)

    def error(self, message):
        self.errors.append(message)


class FakeUpCloudClient:
    """In-memory stand-in for UpCloudClient. State changes happen instantly."""

    def __init__(self):
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self.servers = {}
        self.storages = {
            SOURCE_TEMPLATE: StorageDetails(
                uuid=SOURCE_TEMPLATE, title="Ubuntu Server 24.04", zone="fi-hel1",
                state=STORAGE_STATE_ONLINE, type=STORAGE_TYPE_TEMPLATE, size=10,
            )
        }
        self.deleted_servers = []
        self.deleted_storages = []
        self.fail_create_zones = set()
        self.fail_templatize_zones = set()
        self.fail_delete_storages = set()
        self.block_start_zones = set()
        self.no_disk_zones = set()

    def get_account(self):
        return {"username": "api-user", "credits": 1000}

    def create_server(self, zone, title, hostname, storage_uuid, storage_size, storage_title,
                      login_username, ssh_keys, core_number=1, memory_amount=1024):
        if zone in self.fail_create_zones:
            raise UpCloudApiError(f"POST server failed with status 400: ZONE_INVALID: {zone}", status_code=400)
        with self._lock:
            n = next(self._ids)
            disk_type = "cdrom" if zone in self.no_disk_zones else STORAGE_TYPE_DISK
            disk = StorageDetails(uuid=f"disk-{n}", title=storage_title, zone=zone,
                                  state=STORAGE_STATE_ONLINE, type=disk_type, size=storage_size)
            self.storages[disk.uuid] = disk
            server = ServerDetails(
                uuid=f"server-{n}", title=title, hostname=hostname, zone=zone,
                state=SERVER_STATE_STARTED,
                storage_devices=[StorageDevice(uuid=disk.uuid, title=disk.title, type=disk_type, size=storage_size)],
                ip_addresses=[IPAddress(access="public", family="IPv4", address=f"192.0.2.{n}")],
            )
            self.servers[server.uuid] = server
            created = copy.deepcopy(server)
        created.state = SERVER_STATE_MAINTENANCE
        return created

    def get_server_details(self, uuid):
        with self._lock:
            if uuid not in self.servers:
                raise UpCloudApiError(f"GET server/{uuid} failed with status 404", status_code=404)
            return copy.deepcopy(self.servers[uuid])

    def stop_server(self, uuid, stop_type="soft", timeout=60):
        with self._lock:
            self.servers[uuid].state = SERVER_STATE_STOPPED
            return copy.deepcopy(self.servers[uuid])

    def delete_server(self, uuid):
        with self._lock:
            server = self.servers.get(uuid)
            if server is None or server.state != SERVER_STATE_STOPPED:
                raise UpCloudApiError(f"DELETE server/{uuid} failed with status 400", status_code=400)
            del self.servers[uuid]
            self.deleted_servers.append(uuid)

    def get_storage_details(self, uuid):
        with self._lock:
            if uuid not in self.storages:
                raise UpCloudApiError(f"GET storage/{uuid} failed with status 404", status_code=404)
            return copy.deepcopy(self.storages[uuid])

    def delete_storage(self, uuid):
        if uuid in self.fail_delete_storages:
            raise UpCloudApiError(f"DELETE storage/{uuid} failed with status 409", status_code=409)
        with self._lock:
            if uuid not in self.storages:
                raise UpCloudApiError(f"DELETE storage/{uuid} failed with status 404", status_code=404)
            del self.storages[uuid]
            self.deleted_storages.append(uuid)

    def templatize_storage(self, uuid, title):
        with self._lock:
            disk = self.storages[uuid]
            if disk.zone in self.fail_templatize_zones:
                raise UpCloudApiError(f"POST storage/{uuid}/templatize failed with status 409", status_code=409)
            n = next(self._ids)
            template = StorageDetails(uuid=f"template-{n}", title=title, zone=disk.zone,
                                      state=STORAGE_STATE_ONLINE, type=STORAGE_TYPE_TEMPLATE, size=disk.size)
            self.storages[template.uuid] = template
            return copy.deepcopy(template)

    def wait_for_server_state(self, uuid, desired_state=None, undesired_state=None, timeout=300, cancel_event=None):
        server = self.get_server_details(uuid)
        if desired_state == SERVER_STATE_STARTED and server.zone in self.block_start_zones:
            if cancel_event is not None and cancel_event.wait(timeout):
                raise OperationCancelled(f'cancelled while waiting for server "{uuid}"')
            raise StateTimeoutError(f'server "{uuid}" never started')
        if (desired_state and server.state != desired_state) or (undesired_state and server.state == undesired_state):
            raise StateTimeoutError(f'server "{uuid}" is in state "{server.state}"')
        return server

    def wait_for_storage_state(self, uuid, desired_state=None, undesired_state=None, timeout=300, cancel_event=None):
        storage = self.get_storage_details(uuid)
        if (desired_state and storage.state != desired_state) or (undesired_state and storage.state == undesired_state):
            raise StateTimeoutError(f'storage "{uuid}" is in state "{storage.state}"')
        return storage

    def templates(self):
        return [s for s in self.storages.values() if s.type == STORAGE_TYPE_TEMPLATE and s.uuid != SOURCE_TEMPLATE]

    def disks(self):
        return [s for s in self.storages.values() if s.type != STORAGE_TYPE_TEMPLATE]


def make_config(zones=("zone-a",), **overrides):
    settings = dict(
        username="api-user",
        password="secret",
        zones=tuple(zones),
        storage_uuid=SOURCE_TEMPLATE,
        template_prefix="prefix",
        state_timeout=5,
        build_timeout=30,
        poll_interval=0,
    )
    settings.update(overrides)
    return BuilderConfig(**settings)


@pytest.fixture
def fake_client():
    return FakeUpCloudClient()


@pytest.fixture
def ui():
    return RecordingUi()


@pytest.fixture
def make_ctx(fake_client, ui):
    def _make(zones=("zone-a",), **overrides):
        ctx = RunContext(config=make_config(zones, **overrides), client=fake_client, ui=ui)
        ctx.ssh_public_key = "ssh-rsa AAAAB3NzaC1yc2E test"
        return ctx
    return _make


@pytest.fixture
def config_factory():
    return make_config
