from __future__ import annotations

import ipaddress
import logging
import secrets
from pathlib import Path
from typing import Any, Mapping, Sequence

import docker
import requests
from docker.errors import DockerException, ImageNotFound, NotFound
from docker.types import IPAMConfig, IPAMPool

from .errors import OrchestratorError
from .models import (
    ContainerSpec,
    ContainerSpecSupplier,
    PortBinding,
    ServiceHandle,
    SharedPath,
    validate_service_id,
)
from .orchestrator import ServiceOrchestrator
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

SHARED_DIR_MOUNTPOINT = "/nearnet-shared"
SERVICE_LABEL = "nearnet.service"
NETWORK_LABEL = "nearnet.network"

# docker-py only wraps HTTP error responses; transport failures come through as requests errors.
DOCKER_ERRORS = (DockerException, requests.exceptions.RequestException)


def _host_port_bindings(ports: Mapping[str, Any] | None, used_ports: frozenset[str]) -> dict[str, PortBinding]:
    """Pick a host binding docker reports for each used port, preferring IPv4."""
    out: dict[str, PortBinding] = {}
    for desc in sorted(used_ports):
        entries = (ports or {}).get(desc) or []
        if not entries:
            continue
        first = next((e for e in entries if ":" not in (e.get("HostIp") or "")), entries[0])
        out[desc] = PortBinding(interface_ip=first.get("HostIp") or "0.0.0.0", interface_port=int(first["HostPort"]))
    return out


class DockerOrchestrator(ServiceOrchestrator):
    """Runs services as containers on a dedicated docker bridge network.

    Each service gets a pre-allocated address on the network subnet and the
    network alias ``service_id``, which is the hostname other services use.
    Containers are labeled so ``remove_services`` can find them again.
    """

    def __init__(self, client: docker.DockerClient | None = None, config: Settings | None = None):
        self.config = config or default_settings
        self._client = client
        self._allocated: set[str] = set()

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def ping(self) -> bool:
        try:
            self.client.ping()
            return True
        except DOCKER_ERRORS:
            return False

    def _network(self):
        name = self.config.docker_network
        try:
            return self.client.networks.get(name)
        except NotFound:
            ipam = IPAMConfig(pool_configs=[IPAMPool(subnet=self.config.subnet)])
            net = self.client.networks.create(name, driver="bridge", ipam=ipam, labels={NETWORK_LABEL: name})
            logger.info("Created docker network '%s' (%s)", name, self.config.subnet)
            return net

    def _next_free_ip(self, network) -> str:
        network.reload()
        used = set(self._allocated)
        for info in (network.attrs.get("Containers") or {}).values():
            addr = (info.get("IPv4Address") or "").split("/")[0]
            if addr:
                used.add(addr)
        hosts = ipaddress.ip_network(self.config.subnet).hosts()
        # The first host address is the bridge gateway.
        next(hosts, None)
        for candidate in hosts:
            ip = str(candidate)
            if ip not in used:
                self._allocated.add(ip)
                return ip
        raise OrchestratorError(f"No free address left in subnet {self.config.subnet}")

    def _shared_host_dir(self, service_id: str) -> Path:
        p = Path(self.config.shared_dir_root).resolve() / service_id
        p.mkdir(parents=True, exist_ok=True)
        return p

    def _create_container(self, name: str, spec: ContainerSpec, labels: dict[str, str], shared_dir: Path):
        kwargs: dict[str, Any] = {
            "command": list(spec.cmd) if spec.cmd else None,
            "name": name,
            "environment": dict(spec.env),
            "labels": labels,
            "volumes": {str(shared_dir): {"bind": SHARED_DIR_MOUNTPOINT, "mode": "rw"}},
        }
        if self.config.debug and spec.used_ports:
            # None lets docker pick a free host port.
            kwargs["ports"] = {desc: None for desc in spec.used_ports}
        try:
            return self.client.containers.create(spec.image, **kwargs)
        except ImageNotFound:
            logger.info("Pulling image %s", spec.image)
            self.client.images.pull(spec.image)
            return self.client.containers.create(spec.image, **kwargs)

    def add_service(
        self,
        service_id: str,
        spec: ContainerSpec | ContainerSpecSupplier,
    ) -> tuple[ServiceHandle, dict[str, PortBinding]]:
        validate_service_id(service_id)
        name = f"nearnet-{service_id}-{secrets.token_hex(3)}"
        labels = {SERVICE_LABEL: service_id, NETWORK_LABEL: self.config.docker_network}
        ip_addr = None
        try:
            network = self._network()
            ip_addr = self._next_free_ip(network)
            resolved = spec(ip_addr) if callable(spec) else spec
            container = self._create_container(name, resolved, labels, self._shared_host_dir(service_id))
            network.connect(container, ipv4_address=ip_addr, aliases=[service_id])
            container.start()
            container.reload()
        except DOCKER_ERRORS + (OSError,) as e:
            if ip_addr is not None:
                self._allocated.discard(ip_addr)
            raise OrchestratorError(f"Failed to add service '{service_id}': {e}") from e

        logger.info("Started container %s (%s) from image %s", name, ip_addr, resolved.image)
        handle = ServiceHandle(service_id=service_id, container_id=container.id, ip_address=ip_addr)
        return handle, _host_port_bindings(container.ports, resolved.used_ports)

    def exec_command(self, handle: ServiceHandle, argv: Sequence[str]) -> tuple[int, str]:
        try:
            container = self.client.containers.get(handle.container_id)
            result = container.exec_run(list(argv))
        except DOCKER_ERRORS as e:
            raise OrchestratorError(f"Failed to exec {list(argv)!r} in service '{handle.service_id}': {e}") from e
        output = result.output or b""
        return int(result.exit_code), output.decode("utf-8", errors="replace")

    def get_shared_directory(self, handle: ServiceHandle) -> SharedPath:
        return SharedPath(
            host_path=str(self._shared_host_dir(handle.service_id)),
            container_path=SHARED_DIR_MOUNTPOINT,
        )

    def remove_services(self) -> list[str]:
        """Force-remove every container this orchestrator labeled, then the network."""
        net_name = self.config.docker_network
        removed: list[str] = []
        try:
            containers = self.client.containers.list(all=True, filters={"label": [f"{NETWORK_LABEL}={net_name}"]})
            for cont in containers:
                cont.remove(force=True)
                removed.append(cont.name)
            try:
                self.client.networks.get(net_name).remove()
            except NotFound:
                pass
        except DOCKER_ERRORS as e:
            raise OrchestratorError(f"Failed to tear down network '{net_name}': {e}") from e
        self._allocated.clear()
        return removed
