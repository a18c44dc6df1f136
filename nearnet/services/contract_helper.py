from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from types import MappingProxyType
from typing import Mapping

from ..models import ContainerSpec, PortBinding, StartedService, port_desc
from ..orchestrator import ServiceOrchestrator
from ..settings import settings
from .contract_helper_db import DatabaseDescriptor
from .nearup import NodeDescriptor

logger = logging.getLogger(__name__)

SERVICE_ID = "contract-helper-service"
PORT_NUM = 3000
DOCKER_PORT_DESC = port_desc(PORT_NUM)
IMAGE = settings.contract_helper_image

ACCOUNT_CREATOR_KEY_ENVVAR = "ACCOUNT_CREATOR_KEY"
INDEXER_DB_CONNECTION_ENVVAR = "INDEXER_DB_CONNECTION"
NODE_RPC_URL_ENVVAR = "NODE_URL"
STATIC_ENVVARS = MappingProxyType(
    {
        "MAIL_HOST": "smtp.ethereal.email",
        "MAIL_PASSWORD": "",
        "MAIL_PORT": "587",
        "MAIL_USER": "",
        "NEW_ACCOUNT_AMOUNT": "10000000000000000000000000",
        "NODE_ENV": "development",  # development|production
        "PORT": str(PORT_NUM),
        "TWILIO_ACCOUNT_SID": "",
        "TWILIO_AUTH_TOKEN": "",
        "TWILIO_FROM_PHONE": "+14086179592",
        # Left empty: the wallet and the contract helper would each need the other's published port.
        "WALLET_URL": "",
    }
)


@dataclass(frozen=True)
class ContractHelperDescriptor:
    hostname: str
    port: int
    host_port_binding: PortBinding | None = None


def indexer_db_connection_url(db: DatabaseDescriptor) -> str:
    return f"postgres://{db.username}:{db.password}@{db.hostname}:{db.port}/{db.indexer_db}?ssl=require"


def node_rpc_url(node: NodeDescriptor) -> str:
    return f"http://{node.hostname}:{node.port}"


def build_envvars(db: DatabaseDescriptor, node: NodeDescriptor, account_creator_key: str) -> dict[str, str]:
    envvars = {
        ACCOUNT_CREATOR_KEY_ENVVAR: account_creator_key,
        INDEXER_DB_CONNECTION_ENVVAR: indexer_db_connection_url(db),
        NODE_RPC_URL_ENVVAR: node_rpc_url(node),
    }
    envvars.update(STATIC_ENVVARS)
    return envvars


def container_spec(envvars: Mapping[str, str], ip_addr: str) -> ContainerSpec:
    return ContainerSpec(image=IMAGE, used_ports=frozenset({DOCKER_PORT_DESC}), env=envvars)


def describe(started: StartedService) -> ContractHelperDescriptor:
    return ContractHelperDescriptor(
        hostname=started.handle.service_id,
        port=PORT_NUM,
        host_port_binding=started.binding_for(DOCKER_PORT_DESC),
    )


def add_contract_helper(
    orchestrator: ServiceOrchestrator,
    db: DatabaseDescriptor,
    node: NodeDescriptor,
    account_creator_key: str,
) -> ContractHelperDescriptor:
    logger.info("Adding contract helper service running on port '%s'", DOCKER_PORT_DESC)
    envvars = build_envvars(db, node, account_creator_key)
    started = orchestrator.start(SERVICE_ID, partial(container_spec, envvars))
    return describe(started)
