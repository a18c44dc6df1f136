from __future__ import annotations

from typing import Sequence

import httpx

from .errors import ProbeError
from .orchestrator import ServiceOrchestrator
from .models import ServiceHandle
from .readiness import Probe


def exec_probe(orchestrator: ServiceOrchestrator, handle: ServiceHandle, argv: Sequence[str]) -> Probe:
    """Probe that runs ``argv`` inside the service container."""
    cmd = list(argv)

    def probe() -> tuple[int, str]:
        return orchestrator.exec_command(handle, cmd)

    return probe


def http_probe(url: str, timeout_s: float = 2.0, transport: httpx.BaseTransport | None = None) -> Probe:
    """Probe that GETs ``url``.

    HTTP 200 counts as exit code 0; any other status is reported as the exit
    code. Connection problems raise ProbeError.
    """

    def probe() -> tuple[int, str]:
        try:
            with httpx.Client(timeout=timeout_s, follow_redirects=False, transport=transport) as client:
                resp = client.get(url)
        except httpx.HTTPError as e:
            raise ProbeError(f"GET {url} failed: {type(e).__name__}: {e}") from e
        if resp.status_code != 200:
            return resp.status_code, resp.text
        return 0, resp.text

    return probe
