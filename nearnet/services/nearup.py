from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from ..health import http_probe
from ..models import ContainerSpec, PortBinding, RetryPolicy, StartedService, port_desc
from ..orchestrator import ServiceOrchestrator
from ..readiness import Probe, wait_until_ready
from ..settings import settings

logger = logging.getLogger(__name__)

SERVICE_ID = "nearup"
IMAGE = settings.nearup_image
RPC_PORT_NUM = 3030
DOCKER_PORT_DESC = port_desc(RPC_PORT_NUM)
CMD: tuple[str, ...] = ("run", "localnet")
STATUS_PATH = "/status"
DEFAULT_AVAILABILITY_POLICY = RetryPolicy(
    max_attempts=settings.node_availability_attempts,
    delay_s=settings.node_availability_delay_s,
)


@dataclass(frozen=True)
class NodeDescriptor:
    hostname: str
    port: int
    host_port_binding: PortBinding | None = None


def container_spec(ip_addr: str) -> ContainerSpec:
    return ContainerSpec(image=IMAGE, used_ports=frozenset({DOCKER_PORT_DESC}), cmd=CMD)


def start_nearup(orchestrator: ServiceOrchestrator) -> StartedService:
    logger.info("Adding nearup node with RPC on port '%s'", DOCKER_PORT_DESC)
    return orchestrator.start(SERVICE_ID, container_spec)


def wait_for_nearup(
    started: StartedService,
    policy: RetryPolicy = DEFAULT_AVAILABILITY_POLICY,
    sleep: Callable[[float], None] = time.sleep,
    probe_factory: Callable[[str], Probe] = http_probe,
) -> int:
    """Poll the node's RPC status endpoint through its host port binding.

    Without a binding the node can't be reached from here, so the wait is
    skipped and 0 is returned.
    """
    binding = started.binding_for(DOCKER_PORT_DESC)
    if binding is None:
        logger.debug("nearup has no host port binding; not waiting for its RPC")
        return 0
    host = binding.interface_ip
    if host in ("", "0.0.0.0", "::"):
        host = "127.0.0.1"
    elif ":" in host:
        host = f"[{host}]"
    url = f"http://{host}:{binding.interface_port}{STATUS_PATH}"
    return wait_until_ready(probe_factory(url), policy, description="Nearup node", sleep=sleep)


def describe(started: StartedService) -> NodeDescriptor:
    return NodeDescriptor(
        hostname=started.handle.service_id,
        port=RPC_PORT_NUM,
        host_port_binding=started.binding_for(DOCKER_PORT_DESC),
    )


def add_nearup(
    orchestrator: ServiceOrchestrator,
    policy: RetryPolicy = DEFAULT_AVAILABILITY_POLICY,
    sleep: Callable[[float], None] = time.sleep,
) -> NodeDescriptor:
    started = start_nearup(orchestrator)
    wait_for_nearup(started, policy, sleep)
    return describe(started)
