"""Observing the agent Job: pod readiness, logs, completion and result retrieval."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TextIO

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from node_snapshot.errors import (
    JobError,
    JobFailedError,
    JobTimeoutError,
    PodNotReadyError,
    ResultNotFoundError,
)
from node_snapshot.k8s.agent.types import AgentConfig
from node_snapshot.k8s.client import KubeClients
from node_snapshot.serializer import Format, parse_configmap_uri
from node_snapshot.serializer.writer import KEY_FORMAT, KEY_TIMESTAMP, SNAPSHOT_KEY_PREFIX

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_LOG_TAIL_LINES = 50
DEFAULT_REQUEST_TIMEOUT = 10.0
LOG_PREFIX = ""


def _condition(job: client.V1Job, kind: str) -> client.V1JobCondition | None:
    for cond in (job.status and job.status.conditions) or []:
        if cond.type == kind and cond.status == "True":
            return cond
    return None


class JobObserver:
    """Polls the agent Job and its pod.

    Every API call carries ``request_timeout`` so a stalled connection
    cannot hold a worker thread past the caller's deadline.
    """

    def __init__(
        self,
        clients: KubeClients,
        cfg: AgentConfig,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self._clients = clients
        self.config = cfg
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout

    def _find_pod(self) -> client.V1Pod | None:
        pods = self._clients.core.list_namespaced_pod(
            self.config.namespace,
            label_selector=f"job-name={self.config.job_name}",
            _request_timeout=self.request_timeout,
        )
        return pods.items[0] if pods.items else None

    async def _poll_pod(self) -> str:
        while True:
            try:
                pod = await asyncio.to_thread(self._find_pod)
            except (ApiException, HTTPError) as e:
                raise PodNotReadyError(f"failed to list agent pods: {getattr(e, 'reason', e)}") from e
            if pod is not None:
                phase = pod.status.phase if pod.status else None
                if phase in ("Running", "Succeeded"):
                    logger.debug("agent pod %s is %s", pod.metadata.name, phase)
                    return pod.metadata.name
                if phase == "Failed":
                    reason = (pod.status.reason or pod.status.message or "unknown") if pod.status else "unknown"
                    raise PodNotReadyError(f"agent pod {pod.metadata.name} failed: {reason}")
            await asyncio.sleep(self.poll_interval)

    async def wait_for_pod_ready(self, timeout: float | None = None) -> str:
        """Wait until the agent pod is Running (or already Succeeded); return its name."""
        timeout = self.config.pod_ready_timeout if timeout is None else timeout
        try:
            async with asyncio.timeout(timeout):
                return await self._poll_pod()
        except TimeoutError as e:
            raise PodNotReadyError(f"agent pod for Job {self.config.job_name!r} not ready within {timeout}s") from e

    async def stream_logs(self, sink: TextIO, prefix: str = LOG_PREFIX) -> None:
        """Copy the agent pod's log stream to ``sink`` until it ends or is cancelled."""
        pod = await asyncio.to_thread(self._find_pod)
        if pod is None:
            logger.debug("no agent pod to stream logs from")
            return
        resp = await asyncio.to_thread(
            self._clients.core.read_namespaced_pod_log,
            pod.metadata.name,
            self.config.namespace,
            follow=True,
            _preload_content=False,
            # connect timeout only; a quiet agent must not end the stream
            _request_timeout=(self.request_timeout, None),
        )
        try:
            while True:
                line = await asyncio.to_thread(resp.readline)
                if not line:
                    return
                if isinstance(line, bytes):
                    line = line.decode(errors="replace")
                sink.write(f"{prefix}{line}")
                sink.flush()
        finally:
            _close_stream(resp)

    async def get_pod_logs(self, tail_lines: int = DEFAULT_LOG_TAIL_LINES) -> str | None:
        """Last ``tail_lines`` lines of the agent pod log, or None when unavailable."""

        def fetch() -> str | None:
            pod = self._find_pod()
            if pod is None:
                return None
            return self._clients.core.read_namespaced_pod_log(
                name=pod.metadata.name,
                namespace=self.config.namespace,
                tail_lines=tail_lines,
                timestamps=False,
                _request_timeout=self.request_timeout,
            )

        try:
            return await asyncio.to_thread(fetch)
        except ApiException as e:
            logger.warning("failed to get agent logs: %s", e.reason)
        except HTTPError as e:
            logger.warning("failed to get agent logs: %s", e)
        return None

    async def _poll_completion(self) -> None:
        cfg = self.config
        while True:
            try:
                job = await asyncio.to_thread(
                    self._clients.batch.read_namespaced_job_status,
                    cfg.job_name,
                    cfg.namespace,
                    _request_timeout=self.request_timeout,
                )
            except ApiException as e:
                raise JobError(f"failed to read Job {cfg.namespace}/{cfg.job_name}: {e.reason}") from e
            except HTTPError as e:
                raise JobError(f"failed to read Job {cfg.namespace}/{cfg.job_name}: {e}") from e
            if _condition(job, "Complete"):
                logger.info("agent Job %s completed", cfg.job_name)
                return
            failed = _condition(job, "Failed")
            if failed:
                detail = ": ".join(p for p in (failed.reason, failed.message) if p)
                raise JobFailedError(f"agent Job {cfg.job_name} failed" + (f": {detail}" if detail else ""))
            await asyncio.sleep(self.poll_interval)

    async def wait_for_completion(self, timeout: float | None = None) -> None:
        """Block until the Job reports Complete.

        The deadline covers the status calls themselves, not only the sleeps
        between them.

        Raises:
            JobFailedError: the Job reached the Failed condition.
            JobTimeoutError: neither condition appeared within ``timeout``.
            JobError: the Job status could not be read.
        """
        timeout = self.config.timeout if timeout is None else timeout
        try:
            async with asyncio.timeout(timeout):
                await self._poll_completion()
        except TimeoutError as e:
            raise JobTimeoutError(f"agent Job {self.config.job_name} did not complete within {timeout}s") from e


def _close_stream(resp) -> None:
    """Unblock any reader still inside ``resp.readline`` and release the connection."""
    shutdown = getattr(resp, "shutdown", None)
    if shutdown is not None:
        shutdown()
    resp.close()


@dataclass
class SnapshotResult:
    """Encoded snapshot read back from the result ConfigMap."""

    data: bytes
    format: Format
    timestamp: str | None
    uri: str


class ResultRetriever:
    """Reads the snapshot the agent left in its result ConfigMap."""

    def __init__(self, clients: KubeClients, uri: str) -> None:
        self._clients = clients
        self.uri = uri
        self.namespace, self.name = parse_configmap_uri(uri)

    def _get_sync(self) -> SnapshotResult:
        try:
            cm = self._clients.core.read_namespaced_config_map(self.name, self.namespace)
        except ApiException as e:
            if e.status == 404:
                raise ResultNotFoundError(f"result ConfigMap {self.namespace}/{self.name} not found") from e
            raise ResultNotFoundError(f"failed to read ConfigMap {self.namespace}/{self.name}: {e.reason}") from e
        data = cm.data or {}
        fmt = Format.YAML
        if data.get(KEY_FORMAT):
            fmt = Format.parse(data[KEY_FORMAT])
        content = data.get(f"{SNAPSHOT_KEY_PREFIX}{fmt.extension}")
        if content is None:
            content = next((v for k, v in data.items() if k.startswith(SNAPSHOT_KEY_PREFIX)), None)
        if not content:
            raise ResultNotFoundError(f"ConfigMap {self.namespace}/{self.name} holds no snapshot data")
        return SnapshotResult(data=content.encode(), format=fmt, timestamp=data.get(KEY_TIMESTAMP), uri=self.uri)

    async def get_snapshot(self) -> SnapshotResult:
        return await asyncio.to_thread(self._get_sync)
