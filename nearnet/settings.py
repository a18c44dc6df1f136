from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    journal_path: str = os.getenv("NEARNET_JOURNAL_PATH", "nearnet.db")
    docker_network: str = os.getenv("NEARNET_DOCKER_NETWORK", "nearnet")
    subnet: str = os.getenv("NEARNET_SUBNET", "172.28.0.0/16")
    shared_dir_root: str = os.getenv("NEARNET_SHARED_DIR", ".nearnet/shared")

    # Publish every used port on a random host port so services can be reached from the host.
    debug: bool = _env_bool("NEARNET_DEBUG", False)

    # Readiness polling
    db_availability_attempts: int = _env_int("NEARNET_DB_AVAILABILITY_ATTEMPTS", 10)
    db_availability_delay_s: float = _env_float("NEARNET_DB_AVAILABILITY_DELAY_S", 1.0)
    node_availability_attempts: int = _env_int("NEARNET_NODE_AVAILABILITY_ATTEMPTS", 30)
    node_availability_delay_s: float = _env_float("NEARNET_NODE_AVAILABILITY_DELAY_S", 2.0)

    # Images
    contract_helper_image: str = os.getenv("NEARNET_CONTRACT_HELPER_IMAGE", "near-contract-helper")
    nearup_image: str = os.getenv("NEARNET_NEARUP_IMAGE", "nearprotocol/nearup:latest")

    # Secrets
    account_creator_key: str | None = os.getenv("NEARNET_ACCOUNT_CREATOR_KEY")


settings = Settings()
