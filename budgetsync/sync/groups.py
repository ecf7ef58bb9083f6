"""
Group Directory

Resolves which groups the signed-in user can see, creating a personal
group (with the user as owner) the first time a user has none.

CRITICAL RULES:
1. No user, no fetch: AuthenticationError is raised before any read
2. Reads are retried with linear backoff; writes are not
3. After retries run out the cached groups are cleared, never left stale
"""

from typing import Optional
from uuid import UUID

import structlog
from tenacity import RetryCallState

from budgetsync.audit import AuditLogger, create_correlation_id, get_audit_logger
from budgetsync.config import SyncSettings, get_settings
from budgetsync.errors import (
    AuthenticationError,
    GroupLoadError,
    MutationError,
    TransientFetchError,
)
from budgetsync.models import (
    AuditEventBuilder,
    CurrentUser,
    GroupMembershipView,
    MembershipRole,
)
from budgetsync.services.remote import RemoteStore
from budgetsync.sync.retry import describe_retry, linear_backoff
from budgetsync.sync.tasks import TaskSlot


logger = structlog.get_logger(__name__)


class GroupDirectory:
    """Cached view of the current user's groups and roles."""

    def __init__(
        self,
        remote: RemoteStore,
        settings: Optional[SyncSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._remote = remote
        self._settings = settings or get_settings().sync
        self._audit = audit_logger or get_audit_logger()
        self._slot = TaskSlot("group_directory")
        self._groups: tuple[GroupMembershipView, ...] = ()
        self._error: Optional[str] = None
        self.last_attempts = 0

    @property
    def groups(self) -> tuple[GroupMembershipView, ...]:
        return self._groups

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def owner_groups(self) -> tuple[GroupMembershipView, ...]:
        return tuple(g for g in self._groups if g.is_owner)

    async def resolve_groups(
        self,
        current_user: Optional[CurrentUser] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[GroupMembershipView]:
        """
        Fetch the user's groups, provisioning one if needed.

        Args:
            current_user: Signed-in user; asked from the remote store if omitted
            correlation_id: Ties the audit events of this resolution together

        Returns:
            Groups with the user's role, in membership order

        Raises:
            AuthenticationError: Nobody is signed in
            GroupLoadError: Every fetch attempt failed
            MutationError: Provisioning the default group failed
        """
        user = current_user or await self._remote.get_current_user()
        if user is None:
            error = AuthenticationError()
            self._error = error.user_message
            raise error

        correlation_id = correlation_id or create_correlation_id()
        return await self._slot.run(self._resolve_with_retry(user, correlation_id))

    async def _resolve_with_retry(
        self,
        user: CurrentUser,
        correlation_id: UUID,
    ) -> list[GroupMembershipView]:
        def before_sleep(retry_state: RetryCallState) -> None:
            attempt, delay, message = describe_retry(retry_state)
            self._error = message
            self._audit.log(AuditEventBuilder.fetch_retry_scheduled(
                "group", attempt, delay, message, correlation_id
            ))

        attempts = 0
        try:
            async for attempt in linear_backoff(self._settings, before_sleep):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    groups = await self._resolve_once(user, correlation_id)
        except TransientFetchError as e:
            failure = GroupLoadError(attempts=attempts)
            self._groups = ()
            self._error = failure.user_message
            self.last_attempts = attempts
            self._audit.log(AuditEventBuilder.load_failed(
                "group", attempts, e.user_message, correlation_id
            ))
            raise failure from e
        except MutationError as e:
            self._error = e.user_message
            self._audit.log(AuditEventBuilder.mutation_failed(
                "group", None, "provision", e.user_message, correlation_id
            ))
            raise

        self._groups = tuple(groups)
        self._error = None
        self.last_attempts = attempts
        self._audit.log(AuditEventBuilder.groups_loaded(
            user.id, [g.id for g in groups], correlation_id
        ))
        return groups

    async def _resolve_once(
        self,
        user: CurrentUser,
        correlation_id: UUID,
    ) -> list[GroupMembershipView]:
        memberships = await self._remote.list_memberships(user.id)
        if not memberships:
            return [await self._provision(user, correlation_id)]

        groups = await self._remote.list_groups([m.group_id for m in memberships])
        by_id = {g.id: g for g in groups}
        views = []
        for membership in memberships:
            group = by_id.get(membership.group_id)
            if group is None:
                logger.debug("membership_without_group", group_id=membership.group_id)
                continue
            views.append(GroupMembershipView(group=group, role=membership.role))
        return views

    async def _provision(
        self,
        user: CurrentUser,
        correlation_id: UUID,
    ) -> GroupMembershipView:
        group = await self._remote.insert_group(user.id)
        try:
            await self._remote.insert_membership(group.id, user.id, MembershipRole.OWNER)
        except MutationError:
            # A group without its owner membership is unreachable
            await self._discard_group(group.id)
            raise
        self._audit.log(AuditEventBuilder.group_provisioned(user.id, group.id, correlation_id))
        return GroupMembershipView(group=group, role=MembershipRole.OWNER)

    async def _discard_group(self, group_id: str) -> None:
        try:
            await self._remote.delete_group(group_id)
        except MutationError as e:
            logger.error("orphan_group_left", group_id=group_id, error=e.user_message)

    async def close(self) -> None:
        """Cancel an in-flight resolution, including a pending retry wait."""
        await self._slot.close()
