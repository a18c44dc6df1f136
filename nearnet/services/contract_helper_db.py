"""PostgreSQL database backing the contract helper.

Provisioning is split into steps so the topology assembler can report which
one failed: start the container, wait until ``psql`` answers, create the
databases, describe the result. ``add_contract_helper_db`` runs all of them.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Iterable

from ..errors import InitializationCommandError
from ..health import exec_probe
from ..models import (
    EXEC_COMMAND_SUCCESS_EXIT_CODE,
    ContainerSpec,
    PortBinding,
    RetryPolicy,
    StartedService,
    port_desc,
)
from ..orchestrator import ServiceOrchestrator
from ..readiness import wait_until_ready
from ..settings import settings

logger = logging.getLogger(__name__)

SERVICE_ID = "contract-helper-db"
IMAGE = "postgres:13.4-alpine3.14"
PORT_NUM = 5432
DOCKER_PORT_DESC = port_desc(PORT_NUM)
POSTGRES_USER = "near"
POSTGRES_PASSWORD = "near"
STATIC_ENVVARS = MappingProxyType(
    {
        "POSTGRES_USER": POSTGRES_USER,
        "POSTGRES_PASSWORD": POSTGRES_PASSWORD,
    }
)

INDEXER_DB = "indexer"
DBS_TO_INITIALIZE: tuple[str, ...] = (INDEXER_DB,)

AVAILABILITY_CMD: tuple[str, ...] = ("psql", "-U", POSTGRES_USER, "-c", "\\l")
DEFAULT_AVAILABILITY_POLICY = RetryPolicy(
    max_attempts=settings.db_availability_attempts,
    delay_s=settings.db_availability_delay_s,
)


@dataclass(frozen=True)
class DatabaseDescriptor:
    hostname: str
    port: int
    username: str
    password: str
    databases: tuple[str, ...]
    # Only set when ports are published to the host (debug mode).
    host_port_binding: PortBinding | None = None

    def __post_init__(self) -> None:
        if not self.databases:
            raise ValueError("DatabaseDescriptor needs at least one database.")

    @property
    def indexer_db(self) -> str:
        return INDEXER_DB if INDEXER_DB in self.databases else self.databases[0]


def container_spec(ip_addr: str) -> ContainerSpec:
    return ContainerSpec(image=IMAGE, used_ports=frozenset({DOCKER_PORT_DESC}), env=STATIC_ENVVARS)


def create_database_cmd(name: str, owner: str = POSTGRES_USER) -> list[str]:
    return ["psql", "-U", owner, "-c", f"create database {name} with owner={owner}"]


def start_contract_helper_db(orchestrator: ServiceOrchestrator) -> StartedService:
    logger.info("Adding contract helper DB running on port '%s'", DOCKER_PORT_DESC)
    return orchestrator.start(SERVICE_ID, container_spec)


def wait_for_contract_helper_db(
    orchestrator: ServiceOrchestrator,
    started: StartedService,
    policy: RetryPolicy = DEFAULT_AVAILABILITY_POLICY,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    probe = exec_probe(orchestrator, started.handle, AVAILABILITY_CMD)
    return wait_until_ready(probe, policy, description="Contract helper DB", sleep=sleep)


def create_databases(
    orchestrator: ServiceOrchestrator,
    started: StartedService,
    databases: Iterable[str] = DBS_TO_INITIALIZE,
) -> tuple[str, ...]:
    """Create each database, owned by the postgres user.

    A database that already exists makes psql fail, and so does this step.
    """
    names = list(databases)
    if not names:
        raise ValueError("At least one database must be created.")
    created: list[str] = []
    for name in names:
        cmd = create_database_cmd(name)
        exit_code, output = orchestrator.exec_command(started.handle, cmd)
        if exit_code != EXEC_COMMAND_SUCCESS_EXIT_CODE:
            raise InitializationCommandError(cmd, exit_code, output)
        logger.info("Created database '%s' in %s", name, SERVICE_ID)
        created.append(name)
    return tuple(created)


def describe(started: StartedService, databases: tuple[str, ...]) -> DatabaseDescriptor:
    return DatabaseDescriptor(
        hostname=started.handle.service_id,
        port=PORT_NUM,
        username=POSTGRES_USER,
        password=POSTGRES_PASSWORD,
        databases=databases,
        host_port_binding=started.binding_for(DOCKER_PORT_DESC),
    )


def add_contract_helper_db(
    orchestrator: ServiceOrchestrator,
    policy: RetryPolicy = DEFAULT_AVAILABILITY_POLICY,
    sleep: Callable[[float], None] = time.sleep,
) -> DatabaseDescriptor:
    started = start_contract_helper_db(orchestrator)
    wait_for_contract_helper_db(orchestrator, started, policy, sleep)
    return describe(started, create_databases(orchestrator, started))
