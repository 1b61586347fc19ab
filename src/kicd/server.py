"""aiohttp webhook endpoint.

``POST /`` is the only route. A request is authenticated and decoded,
the caller gets its acknowledgment, and only then is the rollout started
as a background task. The caller never learns how the rollout went; that
is reported through logs and Slack.
"""

from __future__ import annotations

import asyncio
from typing import Any

from aiohttp import web
from kubernetes_asyncio import client

from kicd.config import Settings, get_settings
from kicd.exceptions import ControlPlaneQueryError, DecodeError, SecretStoreError
from kicd.keystore import KubernetesSecretStore, SecretStore, StaticSecretStore
from kicd.kube import create_api_client, probe
from kicd.logging import bind_request_context, get_logger
from kicd.models import ResponseMessage, Target, decode_notification, parse_body, peek_repository
from kicd.notifier import Notifier, NullNotifier, SlackNotifier
from kicd.signature import verify_signature
from kicd.updater import RetryPolicy, WorkloadUpdater

log = get_logger("kicd.server")

DEFAULT_SIGNATURE_HEADER = "X-Hub-Signature"
DEFAULT_MAX_BODY_BYTES = 1024**2


def _reply(status: int, success: bool, message: str) -> web.Response:
    body = ResponseMessage(success=success, message=message).to_dict()
    return web.json_response(body, status=status)


@web.middleware
async def not_found_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Answer unknown routes with the JSON reply shape."""
    try:
        return await handler(request)
    except web.HTTPNotFound:
        log.warning(
            "webhook_route_not_found",
            method=request.method,
            path=request.path,
            remote=request.remote,
        )
        return _reply(404, False, "not found")


class WebhookServer:
    """Authenticates build notifications and hands them to the updater."""

    def __init__(
        self,
        updater: WorkloadUpdater,
        secret_store: SecretStore,
        signature_header: str = DEFAULT_SIGNATURE_HEADER,
        shutdown_grace_seconds: float = 30.0,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    ) -> None:
        self._updater = updater
        self._secret_store = secret_store
        self._signature_header = signature_header
        self._shutdown_grace_seconds = shutdown_grace_seconds
        self._max_body_bytes = max_body_bytes
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending_rollouts(self) -> int:
        return len(self._tasks)

    def create_app(self) -> web.Application:
        app = web.Application(
            middlewares=[not_found_middleware], client_max_size=self._max_body_bytes
        )
        app.router.add_route("*", "/", self.handle_webhook)
        app.on_shutdown.append(self._on_shutdown)
        return app

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    async def handle_webhook(self, request: web.Request) -> web.StreamResponse:
        """Authenticate, decode, acknowledge, then start the rollout."""
        bind_request_context(remote=request.remote)

        if request.method != "POST":
            raise web.HTTPNotFound()

        log.info("webhook_received", method=request.method, path=request.path)

        try:
            raw = await request.read()
        except web.HTTPRequestEntityTooLarge:
            log.warning("webhook_body_too_large", limit=self._max_body_bytes)
            return _reply(413, False, "request body too large")
        except (OSError, asyncio.TimeoutError) as exc:
            log.error("webhook_body_read_failed", error=str(exc))
            return _reply(500, False, "could not read request body")

        try:
            data = parse_body(raw)
        except DecodeError as exc:
            log.warning("webhook_body_invalid", error=str(exc))
            return _reply(500, False, str(exc))

        repository = peek_repository(data)
        bind_request_context(repository=repository, remote=request.remote)

        try:
            keys = await self._secret_store.keys_for(repository)
        except SecretStoreError as exc:
            log.error("webhook_keys_unavailable", error=str(exc))
            return _reply(500, False, "could not load signing keys")

        if not verify_signature(raw, request.headers.get(self._signature_header), keys):
            log.warning("webhook_signature_rejected")
            return _reply(401, False, "hmac signature verification failed")

        try:
            target = decode_notification(data)
        except DecodeError as exc:
            log.warning("webhook_payload_incomplete", error=str(exc))
            return _reply(400, False, str(exc))

        # Acknowledge before the cluster is touched
        response = _reply(200, True, f"Successfully parsed {target.repository}")
        await response.prepare(request)
        await response.write_eof()

        self._start_rollout(target)
        return response

    # ------------------------------------------------------------------
    # Background rollouts
    # ------------------------------------------------------------------

    def _start_rollout(self, target: Target) -> None:
        task = asyncio.create_task(self._run_rollout(target))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_rollout(self, target: Target) -> None:
        try:
            await self._updater.rollout(target)
        except ControlPlaneQueryError as exc:
            log.error("rollout_aborted", error=str(exc))
        except Exception:
            log.exception("rollout_unexpected_error")

    async def wait_for_rollouts(self, timeout: float | None = None) -> None:
        """Wait for running rollouts, cancelling any still running at *timeout*."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            log.warning("rollouts_cancelled", count=len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

    async def _on_shutdown(self, app: web.Application) -> None:
        await self.wait_for_rollouts(timeout=self._shutdown_grace_seconds)


# ------------------------------------------------------------------
# Wiring
# ------------------------------------------------------------------


def build_secret_store(settings: Settings, api_client: client.ApiClient) -> SecretStore:
    if settings.uses_secret_store:
        return KubernetesSecretStore(
            client.CoreV1Api(api_client),
            namespace=settings.secret_namespace or "",
            name=settings.secret_name or "",
            key_fields=settings.secret_key_fields,
            cache_seconds=settings.secret_cache_seconds,
        )
    return StaticSecretStore([s.get_secret_value() for s in settings.webhook_secrets])


def build_notifier(settings: Settings) -> Notifier:
    if settings.slack_url is None:
        return NullNotifier()
    return SlackNotifier(settings.slack_url.get_secret_value(), timeout=settings.notify_timeout)


def build_server(settings: Settings, api_client: client.ApiClient) -> WebhookServer:
    updater = WorkloadUpdater(
        client.AppsV1Api(api_client),
        notifier=build_notifier(settings),
        retry_policy=RetryPolicy(
            attempts=settings.conflict_retry_attempts,
            delay_seconds=settings.conflict_retry_delay,
            factor=settings.conflict_retry_factor,
        ),
        label_prefix=settings.label_prefix,
    )
    return WebhookServer(
        updater,
        build_secret_store(settings, api_client),
        signature_header=settings.signature_header,
        shutdown_grace_seconds=settings.shutdown_grace_seconds,
        max_body_bytes=settings.max_body_bytes,
    )


async def run_server(settings: Settings | None = None) -> None:
    """Connect to the cluster and serve until cancelled."""
    settings = settings or get_settings()

    api_client = await create_api_client(settings.kubeconfig)
    runner: web.AppRunner | None = None
    try:
        version = await probe(api_client)
        log.info("kube_api_reachable", version=version)

        server = build_server(settings, api_client)
        runner = web.AppRunner(server.create_app())
        await runner.setup()
        site = web.TCPSite(runner, settings.host, settings.port)
        await site.start()
        log.info("server_listening", host=settings.host, port=settings.port)

        await asyncio.Event().wait()
    finally:
        if runner is not None:
            await runner.cleanup()
        await api_client.close()
