from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict

from pydantic import ValidationError

from . import journal
from .docker_ops import DockerOrchestrator
from .errors import OrchestratorError, TopologyError
from .logs import setup_logging
from .schemas import TopologySecrets
from .settings import settings
from .topology import assemble_topology


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _orchestrator() -> DockerOrchestrator:
    return DockerOrchestrator()


def _up(args: argparse.Namespace) -> int:
    try:
        secrets = TopologySecrets(account_creator_key=args.account_creator_key or "")
    except ValidationError:
        print("An account creator key is required (--account-creator-key or NEARNET_ACCOUNT_CREATOR_KEY).", file=sys.stderr)
        return 2

    orch = _orchestrator()
    if not orch.ping():
        print("Docker is not available. Start Docker Desktop / docker daemon and try again.", file=sys.stderr)
        return 1

    journal.log_event("INFO", "Topology assembly started")
    try:
        topo = assemble_topology(orch, secrets)
    except TopologyError as e:
        journal.log_event("ERROR", str(e))
        print(str(e), file=sys.stderr)
        return 1

    for d in (topo.contract_helper_db, topo.nearup, topo.contract_helper):
        journal.record_service(d.hostname, d.hostname, d.port, d.host_port_binding)
    journal.log_event("INFO", "Topology assembly finished")
    out = topo.as_dict()
    # Never echo the password back.
    out["contract_helper_db"].pop("password", None)
    _print(out)
    return 0


def _down(args: argparse.Namespace) -> int:
    try:
        removed = _orchestrator().remove_services()
    except OrchestratorError as e:
        journal.log_event("ERROR", str(e))
        print(str(e), file=sys.stderr)
        return 1
    journal.clear_services()
    journal.log_event("INFO", f"Removed {len(removed)} container(s)")
    _print({"removed": removed})
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="NEAR contract helper test topology")
    p.add_argument("--log-level", default="INFO", help="DEBUG shows every failed readiness attempt")
    p.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_up = sub.add_parser("up", help="Provision DB, nearup node and contract helper")
    s_up.add_argument("--account-creator-key", default=settings.account_creator_key)

    sub.add_parser("down", help="Remove every container of the topology and its network")
    sub.add_parser("services", help="List provisioned services")

    s_ev = sub.add_parser("events", help="Show journal events")
    s_ev.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)
    setup_logging(args.log_level, args.log_json)
    journal.init_db()

    if args.cmd == "up":
        return _up(args)

    if args.cmd == "down":
        return _down(args)

    if args.cmd == "services":
        _print([asdict(s) for s in journal.list_services()])
        return 0

    if args.cmd == "events":
        _print(journal.latest_events(args.limit))
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
