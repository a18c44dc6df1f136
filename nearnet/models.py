from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Mapping

TCP_PROTOCOL = "tcp"
UDP_PROTOCOL = "udp"
DOCKER_PORT_PROTOCOL_SEPARATOR = "/"
EXEC_COMMAND_SUCCESS_EXIT_CODE = 0

PORT_DESC_RE = re.compile(r"^([0-9]{1,5})/(tcp|udp|sctp)$")
SERVICE_ID_RE = re.compile(r"^[a-z][a-z0-9\-]{0,62}$")


def port_desc(port_num: int, protocol: str = TCP_PROTOCOL) -> str:
    """Build a protocol-qualified port identifier, e.g. ``5432/tcp``."""
    desc = f"{int(port_num)}{DOCKER_PORT_PROTOCOL_SEPARATOR}{protocol}"
    validate_port_desc(desc)
    return desc


def validate_port_desc(desc: str) -> None:
    m = PORT_DESC_RE.match(desc)
    if not m or not (1 <= int(m.group(1)) <= 65535):
        raise ValueError(f"Invalid port descriptor '{desc}'. Use '<port>/<protocol>', e.g. '5432/tcp'.")


def validate_service_id(service_id: str) -> None:
    if not SERVICE_ID_RE.match(service_id):
        raise ValueError(
            "Invalid service id. Use lowercase letters/numbers and hyphen, starting with a letter (max 63 chars)."
        )


@dataclass(frozen=True)
class PortBinding:
    """A port published on the host machine."""

    interface_ip: str
    interface_port: int


@dataclass(frozen=True)
class ContainerSpec:
    image: str
    used_ports: frozenset[str] = frozenset()
    env: Mapping[str, str] = field(default_factory=dict)
    cmd: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if not self.image:
            raise ValueError("ContainerSpec needs an image.")
        for desc in self.used_ports:
            validate_port_desc(desc)
        object.__setattr__(self, "used_ports", frozenset(self.used_ports))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))
        if self.cmd is not None:
            object.__setattr__(self, "cmd", tuple(self.cmd))


# Evaluated by the orchestrator once the service's IP address is allocated.
ContainerSpecSupplier = Callable[[str], ContainerSpec]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    delay_s: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        if self.delay_s < 0:
            raise ValueError("delay_s must not be negative.")


@dataclass(frozen=True)
class ServiceHandle:
    service_id: str
    container_id: str
    ip_address: str


@dataclass(frozen=True)
class SharedPath:
    """The same directory seen from the host and from inside the service container."""

    host_path: str
    container_path: str

    def child(self, relative: str) -> SharedPath:
        if relative.startswith("/") or ".." in relative.split("/"):
            raise ValueError("relative must be a plain relative path (no leading '/', no '..').")
        return SharedPath(
            host_path=str(Path(self.host_path) / relative),
            container_path=posixpath.join(self.container_path, relative),
        )


@dataclass(frozen=True)
class StartedService:
    """What the orchestrator hands back once a container is running."""

    handle: ServiceHandle
    host_port_bindings: Mapping[str, PortBinding]

    def binding_for(self, desc: str) -> PortBinding | None:
        return self.host_port_bindings.get(desc)
