import dataclasses
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from nearnet.docker_ops import NETWORK_LABEL, SHARED_DIR_MOUNTPOINT, DockerOrchestrator
from nearnet.errors import OrchestratorError, TopologyError
from nearnet.models import ContainerSpec, PortBinding, RetryPolicy, ServiceHandle, StartedService
from nearnet.schemas import TopologySecrets
from nearnet.services import contract_helper_db
from nearnet.settings import settings
from nearnet.topology import assemble_topology

SPEC = ContainerSpec(image="postgres:13.4-alpine3.14", used_ports=frozenset({"5432/tcp"}), env={"POSTGRES_USER": "near"})


@pytest.fixture()
def config(tmp_path):
    return dataclasses.replace(
        settings,
        docker_network="nearnet-test",
        subnet="172.28.0.0/16",
        shared_dir_root=str(tmp_path / "shared"),
        debug=True,
    )


@pytest.fixture()
def client():
    c = MagicMock()
    net = MagicMock()
    net.attrs = {"Containers": {"other": {"IPv4Address": "172.28.0.2/16"}}}
    c.networks.get.return_value = net

    container = MagicMock()
    container.id = "abc123"
    container.ports = {"5432/tcp": [{"HostIp": "0.0.0.0", "HostPort": "49153"}]}
    c.containers.create.return_value = container
    return c


def test_add_service_allocates_ip_before_evaluating_supplier(client, config):
    seen = []

    def supplier(ip_addr):
        seen.append(ip_addr)
        return SPEC

    orch = DockerOrchestrator(client=client, config=config)
    handle, bindings = orch.add_service("contract-helper-db", supplier)

    # .1 is the gateway and .2 is taken.
    assert seen == ["172.28.0.3"]
    assert handle == ServiceHandle("contract-helper-db", "abc123", "172.28.0.3")
    assert bindings == {"5432/tcp": PortBinding("0.0.0.0", 49153)}

    container = client.containers.create.return_value
    client.networks.get.return_value.connect.assert_called_once_with(
        container, ipv4_address="172.28.0.3", aliases=["contract-helper-db"]
    )
    container.start.assert_called_once_with()

    args, kwargs = client.containers.create.call_args
    assert args == ("postgres:13.4-alpine3.14",)
    assert kwargs["environment"] == {"POSTGRES_USER": "near"}
    assert kwargs["ports"] == {"5432/tcp": None}
    assert kwargs["labels"][NETWORK_LABEL] == "nearnet-test"
    shared = str((Path(config.shared_dir_root) / "contract-helper-db").resolve())
    assert kwargs["volumes"] == {shared: {"bind": SHARED_DIR_MOUNTPOINT, "mode": "rw"}}
    assert kwargs["name"].startswith("nearnet-contract-helper-db-")


def test_consecutive_services_get_distinct_addresses(client, config):
    orch = DockerOrchestrator(client=client, config=config)
    first, _ = orch.add_service("contract-helper-db", SPEC)
    second, _ = orch.add_service("nearup", SPEC)
    assert first.ip_address == "172.28.0.3"
    assert second.ip_address == "172.28.0.4"


def test_ports_not_published_outside_debug(client, config):
    client.containers.create.return_value.ports = {"5432/tcp": None}
    orch = DockerOrchestrator(client=client, config=dataclasses.replace(config, debug=False))

    _, bindings = orch.add_service("contract-helper-db", SPEC)

    assert "ports" not in client.containers.create.call_args.kwargs
    assert bindings == {}


def test_missing_network_is_created_with_subnet(client, config):
    net = client.networks.get.return_value
    client.networks.get.side_effect = NotFound("no network")
    client.networks.create.return_value = net

    DockerOrchestrator(client=client, config=config).add_service("nearup", SPEC)

    args, kwargs = client.networks.create.call_args
    assert args == ("nearnet-test",)
    assert kwargs["driver"] == "bridge"
    assert kwargs["ipam"]["Config"][0]["Subnet"] == "172.28.0.0/16"


def test_missing_image_is_pulled(client, config):
    container = client.containers.create.return_value
    client.containers.create.side_effect = [ImageNotFound("missing"), container]

    handle, _ = DockerOrchestrator(client=client, config=config).add_service("nearup", SPEC)

    client.images.pull.assert_called_once_with("postgres:13.4-alpine3.14")
    assert handle.container_id == "abc123"


def test_docker_failure_becomes_orchestrator_error(client, config):
    client.containers.create.return_value.start.side_effect = APIError("port is already allocated")

    with pytest.raises(OrchestratorError) as exc:
        DockerOrchestrator(client=client, config=config).add_service("nearup", SPEC)

    assert "nearup" in str(exc.value)
    assert isinstance(exc.value.__cause__, APIError)


def test_invalid_service_id_rejected(client, config):
    with pytest.raises(ValueError):
        DockerOrchestrator(client=client, config=config).add_service("Not_Valid", SPEC)
    client.containers.create.assert_not_called()


def test_exec_command_decodes_output(client, config):
    container = MagicMock()
    container.exec_run.return_value = SimpleNamespace(exit_code=1, output=b'ERROR:  database "indexer" already exists\n')
    client.containers.get.return_value = container
    handle = ServiceHandle("contract-helper-db", "abc123", "172.28.0.3")

    code, out = DockerOrchestrator(client=client, config=config).exec_command(handle, ("psql", "-c", "x"))

    client.containers.get.assert_called_once_with("abc123")
    container.exec_run.assert_called_once_with(["psql", "-c", "x"])
    assert code == 1
    assert "already exists" in out


def test_exec_command_on_missing_container(client, config):
    client.containers.get.side_effect = NotFound("gone")
    handle = ServiceHandle("contract-helper-db", "abc123", "172.28.0.3")

    with pytest.raises(OrchestratorError):
        DockerOrchestrator(client=client, config=config).exec_command(handle, ["true"])


def test_shared_directory(client, config):
    handle = ServiceHandle("contract-helper-db", "abc123", "172.28.0.3")
    shared = DockerOrchestrator(client=client, config=config).get_shared_directory(handle)

    assert shared.container_path == SHARED_DIR_MOUNTPOINT
    assert Path(shared.host_path).is_dir()


def test_remove_services(client, config):
    c1, c2 = MagicMock(), MagicMock()
    c1.name, c2.name = "nearnet-nearup-aaaaaa", "nearnet-contract-helper-db-bbbbbb"
    client.containers.list.return_value = [c1, c2]

    removed = DockerOrchestrator(client=client, config=config).remove_services()

    assert removed == ["nearnet-nearup-aaaaaa", "nearnet-contract-helper-db-bbbbbb"]
    client.containers.list.assert_called_once_with(all=True, filters={"label": ["nearnet.network=nearnet-test"]})
    c1.remove.assert_called_once_with(force=True)
    client.networks.get.return_value.remove.assert_called_once_with()


def test_ping(client, config):
    orch = DockerOrchestrator(client=client, config=config)
    assert orch.ping() is True
    client.ping.side_effect = DockerException("daemon down")
    assert orch.ping() is False


def test_ipv4_binding_preferred_over_ipv6(client, config):
    client.containers.create.return_value.ports = {
        "5432/tcp": [{"HostIp": "::", "HostPort": "49153"}, {"HostIp": "0.0.0.0", "HostPort": "49153"}]
    }

    _, bindings = DockerOrchestrator(client=client, config=config).add_service("contract-helper-db", SPEC)

    assert bindings == {"5432/tcp": PortBinding("0.0.0.0", 49153)}


def test_ipv6_only_binding_is_kept(client, config):
    client.containers.create.return_value.ports = {"5432/tcp": [{"HostIp": "::", "HostPort": "49153"}]}

    _, bindings = DockerOrchestrator(client=client, config=config).add_service("contract-helper-db", SPEC)

    assert bindings == {"5432/tcp": PortBinding("::", 49153)}


def test_failed_add_releases_its_address(client, config):
    container = client.containers.create.return_value
    container.start.side_effect = APIError("port is already allocated")
    orch = DockerOrchestrator(client=client, config=config)

    with pytest.raises(OrchestratorError):
        orch.add_service("nearup", SPEC)
    assert orch._allocated == set()

    container.start.side_effect = None
    handle, _ = orch.add_service("nearup", SPEC)
    assert handle.ip_address == "172.28.0.3"


def test_daemon_timeout_on_create_becomes_orchestrator_error(client, config):
    client.containers.create.side_effect = requests.exceptions.ReadTimeout("read timed out")
    orch = DockerOrchestrator(client=client, config=config)

    with pytest.raises(OrchestratorError) as exc:
        orch.add_service("nearup", SPEC)

    assert isinstance(exc.value.__cause__, requests.exceptions.ReadTimeout)
    assert orch._allocated == set()


def test_unusable_shared_dir_root_becomes_orchestrator_error(client, config, tmp_path):
    not_a_dir = tmp_path / "f"
    not_a_dir.write_text("")
    orch = DockerOrchestrator(client=client, config=dataclasses.replace(config, shared_dir_root=str(not_a_dir)))

    with pytest.raises(OrchestratorError) as exc:
        orch.add_service("contract-helper-db", SPEC)

    assert isinstance(exc.value.__cause__, OSError)
    client.containers.create.assert_not_called()
    assert orch._allocated == set()


def test_unusable_shared_dir_root_fails_first_topology_stage(client, config, tmp_path, sleeper):
    not_a_dir = tmp_path / "f"
    not_a_dir.write_text("")
    orch = DockerOrchestrator(client=client, config=dataclasses.replace(config, shared_dir_root=str(not_a_dir)))

    with pytest.raises(TopologyError) as exc:
        assemble_topology(orch, TopologySecrets(account_creator_key="k"), sleep=sleeper)

    assert exc.value.stage == "provision contract helper DB"
    assert isinstance(exc.value.cause, OrchestratorError)


def test_dropped_daemon_connection_is_retried_by_readiness(client, config, sleeper):
    container = MagicMock()
    container.exec_run.side_effect = [
        requests.exceptions.ConnectionError("connection aborted"),
        SimpleNamespace(exit_code=0, output=b"List of databases\n"),
    ]
    client.containers.get.return_value = container
    orch = DockerOrchestrator(client=client, config=config)
    started = StartedService(ServiceHandle("contract-helper-db", "abc123", "172.28.0.3"), {})

    attempts = contract_helper_db.wait_for_contract_helper_db(orch, started, RetryPolicy(3, 0.5), sleep=sleeper)

    assert attempts == 2
    assert sleeper.calls == [0.5]


def test_exec_command_connection_error(client, config):
    client.containers.get.side_effect = requests.exceptions.ConnectionError("connection refused")
    handle = ServiceHandle("contract-helper-db", "abc123", "172.28.0.3")

    with pytest.raises(OrchestratorError) as exc:
        DockerOrchestrator(client=client, config=config).exec_command(handle, ["true"])

    assert isinstance(exc.value.__cause__, requests.exceptions.ConnectionError)


def test_remove_services_connection_error(client, config):
    client.containers.list.side_effect = requests.exceptions.ConnectionError("connection refused")

    with pytest.raises(OrchestratorError):
        DockerOrchestrator(client=client, config=config).remove_services()


def test_ping_connection_error(client, config):
    client.ping.side_effect = requests.exceptions.ConnectionError("connection refused")
    assert DockerOrchestrator(client=client, config=config).ping() is False
