from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol
from urllib.parse import quote

import docker
import httpx
from docker.errors import DockerException, NotFound

from .settings import Settings

ARTIFACTS_LABEL = "amgr.artifacts"


class OrchestratorError(Exception):
    pass


@dataclass(frozen=True)
class Workload:
    id: str
    host_paths: tuple[str, ...] = ()
    artifact_uris: tuple[str, ...] = ()


@dataclass(frozen=True)
class RestartResult:
    deployment_id: str
    version: str


class Orchestrator(Protocol):
    def list_workloads(self) -> list[Workload]:
        ...

    def restart(self, workload_id: str) -> RestartResult:
        ...


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class MarathonClient:
    """Minimal Marathon REST client.

    ``hosts`` is one or more ``host:port`` separated by commas. Requests go to
    the first host that answers; connection failures fall through to the next.
    A restart that fails after it was sent is not repeated on another host.
    """

    def __init__(self, hosts: str, timeout_s: float = 10.0, transport: httpx.BaseTransport | None = None):
        self.hosts = [h.strip() for h in hosts.split(",") if h.strip()]
        if not self.hosts:
            raise ValueError("at least one marathon host is required")
        self.timeout_s = timeout_s
        self._transport = transport

    def _base_urls(self) -> list[str]:
        out: list[str] = []
        for h in self.hosts:
            out.append(h.rstrip("/") if "://" in h else f"http://{h.rstrip('/')}")
        return out

    def _request(self, method: str, path: str, params: dict[str, str] | None = None) -> Any:
        last_err: Exception | None = None
        for base in self._base_urls():
            try:
                with httpx.Client(
                    base_url=base, timeout=self.timeout_s, transport=self._transport, follow_redirects=False
                ) as client:
                    resp = client.request(method, path, params=params)
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                last_err = e
                continue
            except httpx.TransportError as e:
                # The request may have reached this host; only reads are resent.
                if method != "GET":
                    raise OrchestratorError(f"{method} {base}{path} failed: {type(e).__name__}: {e}") from e
                last_err = e
                continue
            if resp.status_code >= 400:
                raise OrchestratorError(f"{method} {base}{path} returned HTTP {resp.status_code}: {resp.text[:200]}")
            try:
                return resp.json()
            except ValueError as e:
                raise OrchestratorError(f"{method} {base}{path} returned invalid JSON") from e
        raise OrchestratorError(f"no marathon host reachable ({', '.join(self.hosts)}): {last_err}")

    def list_workloads(self) -> list[Workload]:
        data = self._request("GET", "/v2/apps")
        if not isinstance(data, dict) or not isinstance(data.get("apps"), list):
            raise OrchestratorError("unexpected /v2/apps payload")
        return [self._to_workload(app) for app in data["apps"]]

    @staticmethod
    def _to_workload(app: dict[str, Any]) -> Workload:
        volumes = ((app.get("container") or {}).get("volumes")) or []
        host_paths = tuple(v.get("hostPath", "") for v in volumes if isinstance(v, dict) and v.get("hostPath"))
        uris = [u for u in (app.get("uris") or []) if isinstance(u, str)]
        uris += [f.get("uri", "") for f in (app.get("fetch") or []) if isinstance(f, dict) and f.get("uri")]
        return Workload(id=str(app.get("id", "")), host_paths=host_paths, artifact_uris=tuple(uris))

    def restart(self, workload_id: str) -> RestartResult:
        app_path = "/" + workload_id.lstrip("/")
        data = self._request("POST", f"/v2/apps{quote(app_path)}/restart", params={"force": "true"})
        if not isinstance(data, dict):
            raise OrchestratorError(f"unexpected restart payload for {workload_id}")
        return RestartResult(deployment_id=str(data.get("deploymentId", "")), version=str(data.get("version", "")))


class DockerOrchestrator:
    """Treat local containers as workloads.

    Bind mounts give host paths; the ``amgr.artifacts`` label may list
    artifact URIs separated by commas.
    """

    def __init__(self, client: docker.DockerClient | None = None, label: str | None = None):
        self._client = client
        self.label = label

    def _docker(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise OrchestratorError(f"docker is not available: {e}") from e
        return self._client

    def list_workloads(self) -> list[Workload]:
        filters: dict[str, Any] = {}
        if self.label:
            filters["label"] = [self.label]
        try:
            containers = self._docker().containers.list(filters=filters)
        except DockerException as e:
            raise OrchestratorError(f"failed to list containers: {e}") from e

        out: list[Workload] = []
        for c in containers:
            attrs = c.attrs or {}
            mounts = attrs.get("Mounts") or []
            host_paths = tuple(m["Source"] for m in mounts if m.get("Type") == "bind" and m.get("Source"))
            raw = (c.labels or {}).get(ARTIFACTS_LABEL, "")
            uris = tuple(u.strip() for u in raw.split(",") if u.strip())
            out.append(Workload(id=c.name, host_paths=host_paths, artifact_uris=uris))
        return out

    def restart(self, workload_id: str) -> RestartResult:
        try:
            cont = self._docker().containers.get(workload_id)
            cont.restart()
        except NotFound as e:
            raise OrchestratorError(f"container {workload_id} not found") from e
        except DockerException as e:
            raise OrchestratorError(f"failed to restart {workload_id}: {e}") from e
        return RestartResult(deployment_id=cont.id, version=_utc_now())


def create_orchestrator(settings: Settings) -> Orchestrator:
    if settings.orchestrator == "docker":
        return DockerOrchestrator(label=settings.docker_label)
    return MarathonClient(settings.marathon_hosts, timeout_s=settings.marathon_timeout_s)
