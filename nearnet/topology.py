"""Ordered provisioning of the contract helper topology.

The sequence is a tuple of named stages. Each stage sees the results of the
ones before it, so the dependency order (database and node before the
contract helper that needs their addresses) is visible as data. The first
failing stage stops the run; services already started are left running.
"""
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Mapping

from .errors import NearnetError, TopologyError
from .models import RetryPolicy
from .orchestrator import ServiceOrchestrator
from .schemas import TopologySecrets
from .services import contract_helper, contract_helper_db, nearup
from .services.contract_helper import ContractHelperDescriptor
from .services.contract_helper_db import DatabaseDescriptor
from .services.nearup import NodeDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssemblyContext:
    orchestrator: ServiceOrchestrator
    secrets: TopologySecrets
    db_policy: RetryPolicy = contract_helper_db.DEFAULT_AVAILABILITY_POLICY
    node_policy: RetryPolicy = nearup.DEFAULT_AVAILABILITY_POLICY
    sleep: Callable[[float], None] = time.sleep


@dataclass(frozen=True)
class Stage:
    name: str
    key: str
    run: Callable[[AssemblyContext, Mapping[str, Any]], Any]


@dataclass(frozen=True)
class TopologyDescriptors:
    contract_helper_db: DatabaseDescriptor
    nearup: NodeDescriptor
    contract_helper: ContractHelperDescriptor

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _provision_db(ctx: AssemblyContext, done: Mapping[str, Any]):
    return contract_helper_db.start_contract_helper_db(ctx.orchestrator)


def _wait_for_db(ctx: AssemblyContext, done: Mapping[str, Any]):
    return contract_helper_db.wait_for_contract_helper_db(ctx.orchestrator, done["db_service"], ctx.db_policy, ctx.sleep)


def _initialize_db(ctx: AssemblyContext, done: Mapping[str, Any]):
    started = done["db_service"]
    databases = contract_helper_db.create_databases(ctx.orchestrator, started)
    return contract_helper_db.describe(started, databases)


def _provision_node(ctx: AssemblyContext, done: Mapping[str, Any]):
    return nearup.start_nearup(ctx.orchestrator)


def _wait_for_node(ctx: AssemblyContext, done: Mapping[str, Any]):
    started = done["nearup_service"]
    nearup.wait_for_nearup(started, ctx.node_policy, ctx.sleep)
    return nearup.describe(started)


def _provision_contract_helper(ctx: AssemblyContext, done: Mapping[str, Any]):
    return contract_helper.add_contract_helper(
        ctx.orchestrator,
        done["contract_helper_db"],
        done["nearup"],
        ctx.secrets.account_creator_key,
    )


STAGES: tuple[Stage, ...] = (
    Stage("provision contract helper DB", "db_service", _provision_db),
    Stage("wait for contract helper DB", "db_attempts", _wait_for_db),
    Stage("initialize contract helper DB", "contract_helper_db", _initialize_db),
    Stage("provision nearup node", "nearup_service", _provision_node),
    Stage("wait for nearup node", "nearup", _wait_for_node),
    Stage("provision contract helper", "contract_helper", _provision_contract_helper),
)


def run_stages(ctx: AssemblyContext, stages: tuple[Stage, ...] = STAGES) -> dict[str, Any]:
    done: dict[str, Any] = {}
    for stage in stages:
        logger.info("Topology stage: %s", stage.name)
        try:
            done[stage.key] = stage.run(ctx, done)
        except NearnetError as e:
            logger.error("Topology stage '%s' failed: %s", stage.name, e)
            raise TopologyError(stage.name, e) from e
    return done


def assemble_topology(
    orchestrator: ServiceOrchestrator,
    secrets: TopologySecrets,
    db_policy: RetryPolicy = contract_helper_db.DEFAULT_AVAILABILITY_POLICY,
    node_policy: RetryPolicy = nearup.DEFAULT_AVAILABILITY_POLICY,
    sleep: Callable[[float], None] = time.sleep,
) -> TopologyDescriptors:
    """Provision DB, node and contract helper in order.

    Raises TopologyError for the first stage that fails.
    """
    ctx = AssemblyContext(orchestrator, secrets, db_policy, node_policy, sleep)
    done = run_stages(ctx)
    return TopologyDescriptors(
        contract_helper_db=done["contract_helper_db"],
        nearup=done["nearup"],
        contract_helper=done["contract_helper"],
    )
