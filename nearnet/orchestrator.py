from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from .models import ContainerSpec, ContainerSpecSupplier, PortBinding, ServiceHandle, SharedPath, StartedService


class ServiceOrchestrator(ABC):
    """Boundary to whatever creates containers and runs commands inside them.

    Implementations raise ``OrchestratorError`` for any failure; callers never
    retry those.
    """

    @abstractmethod
    def add_service(
        self,
        service_id: str,
        spec: ContainerSpec | ContainerSpecSupplier,
    ) -> tuple[ServiceHandle, dict[str, PortBinding]]:
        """Create and start a service.

        ``spec`` may be a supplier; it is called with the IP address the
        service will get, before the container is created.
        Returns the handle and the host port bindings keyed by port descriptor.
        """

    @abstractmethod
    def exec_command(self, handle: ServiceHandle, argv: Sequence[str]) -> tuple[int, str]:
        """Run a one-off command in the service container. Returns (exit_code, combined_output)."""

    @abstractmethod
    def get_shared_directory(self, handle: ServiceHandle) -> SharedPath:
        ...

    def start(self, service_id: str, spec: ContainerSpec | ContainerSpecSupplier) -> StartedService:
        handle, bindings = self.add_service(service_id, spec)
        return StartedService(handle=handle, host_port_bindings=dict(bindings))
