"""Sandbox session orchestrator.

Drives one session per session_id: provisioning → cloning → starting → ready,
with error reachable from any in-flight state and terminated from any state.

Single-flight: the provisioning record is written to the store before the first
slow provider call, so a concurrent create for the same session_id observes it
and returns it instead of provisioning a second instance.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from sandbox.config import SessionPolicy
from sandbox.errors import ProviderUnavailableError, ProvisionError
from sandbox.lifecycle import REUSABLE_STATES, SessionStatus, assert_session_transition
from sandbox.provider import ProvisionConfig, ProvisionResult, SandboxProvider
from sandbox.session import Session
from sandbox.session_store import SessionStore

logger = logging.getLogger(__name__)


class _Superseded(Exception):
    """The record being driven was terminated or replaced while a provider call was in flight."""


class SandboxManager:
    def __init__(
        self,
        provider: SandboxProvider,
        store: SessionStore,
        policy: SessionPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider
        self.store = store
        self.policy = policy or SessionPolicy()
        self._sleep = sleep

    # ==================== Operations ====================

    async def create_or_reuse(
        self,
        session_id: str,
        owner: str,
        repo: str,
        branch: str | None = None,
        clone_url: str | None = None,
    ) -> Session:
        # @@@single-flight - no await between lookup and insert: the check-and-write is atomic on the event loop.
        existing = self.store.get(session_id)
        if existing and existing.status in REUSABLE_STATES:
            logger.info("Reusing session %s (%s, status=%s)", session_id, existing.instance_id, existing.status)
            return existing

        session = Session.start(
            session_id=session_id,
            owner=owner,
            repo=repo,
            provider=self.provider.name,
            branch=branch,
            ttl_sec=self.policy.session_ttl_sec,
        )
        assert_session_transition(None, session.status, reason="create")
        self.store.put(session)
        logger.info("Session %s created as %s for %s/%s", session_id, session.instance_id, owner, repo)

        # A failed lifecycle may still hold compute; once its record is replaced nothing else can reach it.
        if existing and existing.status == SessionStatus.ERROR and existing.instance_handle:
            logger.info("Releasing instance %s left by failed %s", existing.instance_handle, existing.instance_id)
            await self._terminate_instance(existing.instance_handle)

        config = ProvisionConfig(
            session_id=session_id,
            instance_id=session.instance_id,
            owner=owner,
            repo=repo,
            branch=branch,
            clone_url=clone_url,
        )
        return await self._drive(session, config)

    def get_status(self, session_id: str) -> Session | None:
        return self.store.touch(session_id)

    async def terminate(self, session_id: str) -> Session | None:
        session = self.store.get(session_id)
        if session is None or session.status == SessionStatus.TERMINATED:
            return None

        handle = session.instance_handle
        assert_session_transition(session.status, SessionStatus.TERMINATED, reason="terminate")
        session.status = SessionStatus.TERMINATED
        session.url = None
        # Record leaves the store before the provider call; an in-flight drive sees it gone and stops.
        self.store.put(session)
        self.store.delete(session_id)
        logger.info("Session %s (%s) terminated", session_id, session.instance_id)

        if handle:
            await self._terminate_instance(handle)
        return session

    def sweep_expired(self, now: datetime | None = None) -> list[Session]:
        expired = self.store.list_expired(now)
        for session in expired:
            self.store.delete(session.session_id)
        if expired:
            logger.info("Swept %d expired sessions", len(expired))
        return expired

    async def reap_expired(self, now: datetime | None = None) -> list[Session]:
        """Sweep expired records and tear down the instances they still held."""
        expired = self.sweep_expired(now)
        for session in expired:
            if session.instance_handle and session.status != SessionStatus.TERMINATED:
                await self._terminate_instance(session.instance_handle)
        return expired

    def list_sessions(self) -> list[Session]:
        return self.store.list_all()

    def close(self) -> None:
        self.store.close()
        self.provider.close()

    # ==================== Lifecycle driver ====================

    async def _drive(self, session: Session, config: ProvisionConfig) -> Session:
        try:
            result = await self._provision_with_retry(config)
            session.instance_handle = result.instance_handle
            session.url = result.endpoint_url
            self._save(session)

            self._transition(session, SessionStatus.CLONING, reason="instance allocated")
            probe = await asyncio.to_thread(self.provider.get_status, result.instance_handle)
            if probe.status in ("error", "terminated"):
                raise ProvisionError(probe.error or f"Instance {probe.status} during startup", self.provider.name)
            if probe.endpoint_url:
                session.url = probe.endpoint_url

            self._transition(session, SessionStatus.STARTING, reason="startup launched")
            await self._wait_until_ready(session)

            self._transition(session, SessionStatus.READY, reason="ready")
            return session
        except _Superseded:
            logger.info("Session %s (%s) superseded mid-provisioning", session.session_id, session.instance_id)
            current = self.store.get(session.session_id)
            if session.instance_handle and current and current.instance_handle == session.instance_handle:
                # @@@shared-handle - a keyed backend handed the live lifecycle the same instance
                logger.info("Instance %s now belongs to %s; leaving it up", session.instance_handle, current.instance_id)
            elif session.instance_handle:
                await self._terminate_instance(session.instance_handle)
            return session
        except ProviderUnavailableError as e:
            self._fail(session, e)
            raise
        except Exception as e:
            self._fail(session, e)
            return session

    async def _provision_with_retry(self, config: ProvisionConfig) -> ProvisionResult:
        attempts = self.policy.provision_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.to_thread(self.provider.provision, config)
            except ProviderUnavailableError:
                raise
            except ProvisionError as e:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "Provision attempt %d/%d for %s failed: %s; retrying in %.1fs",
                    attempt, attempts, config.instance_id, e, self.policy.provision_retry_delay_sec,
                )
                await self._sleep(self.policy.provision_retry_delay_sec)
        raise ProvisionError("No provision attempts configured", self.provider.name)

    async def _wait_until_ready(self, session: Session) -> bool:
        handle = session.instance_handle
        attempts = self.policy.ready_poll_attempts
        for attempt in range(1, attempts + 1):
            if await asyncio.to_thread(self.provider.health_check, handle):
                logger.info("Session %s ready after %d health checks", session.session_id, attempt)
                return True
            logger.debug("Waiting for %s ... attempt %d/%d", session.instance_id, attempt, attempts)
            await self._sleep(self.policy.ready_poll_interval_sec)

        # Degrade to ready on the best-effort endpoint.
        logger.warning(
            "Session %s did not pass a health check within %d attempts; marking ready with endpoint %s",
            session.session_id, attempts, session.url,
        )
        return False

    # ==================== Internal ====================

    def _transition(self, session: Session, target: SessionStatus, *, reason: str) -> None:
        assert_session_transition(session.status, target, reason=reason)
        previous = session.status
        session.status = target
        self._save(session)
        logger.info("Session %s: %s -> %s (%s)", session.session_id, previous, target, reason)

    def _save(self, session: Session) -> None:
        current = self.store.get(session.session_id)
        if current is None or current.instance_id != session.instance_id or current.status == SessionStatus.TERMINATED:
            raise _Superseded()
        session.last_accessed_at = current.last_accessed_at
        self.store.put(session)

    def _fail(self, session: Session, exc: Exception) -> None:
        logger.warning("Session %s (%s) failed in %s: %s", session.session_id, session.instance_id, session.status, exc)
        assert_session_transition(session.status, SessionStatus.ERROR, reason="failure")
        session.status = SessionStatus.ERROR
        session.error_message = str(exc)
        try:
            self._save(session)
        except _Superseded:
            logger.info("Session %s was terminated before its failure could be recorded", session.session_id)

    async def _terminate_instance(self, handle: str) -> None:
        try:
            await asyncio.to_thread(self.provider.terminate, handle)
        except Exception:
            # Teardown is best-effort; the caller always sees success.
            logger.warning("Failed to terminate instance %s", handle, exc_info=True)
