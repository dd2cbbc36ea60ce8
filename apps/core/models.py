# core/models.py

from django.db import models
from django.db.models import F
from django.utils import timezone
import uuid
import logging

logger = logging.getLogger(__name__)


# =============================================================================
# VERSIONED QUERYSET
# =============================================================================

class VersionedQuerySet(models.QuerySet):
    """QuerySet with compare-and-swap style state transitions"""

    def transition(self, pk, guard=None, **changes):
        """
        Apply `changes` to the row `pk` only if it still matches `guard`.

        The guard and the write happen in a single conditional UPDATE, so two
        concurrent callers can never both succeed. Bumps `version` and
        `updated_at` on success.

        Args:
            pk: Primary key of the row
            guard (dict): Field lookups the row must still satisfy
            **changes: Field values to write

        Returns:
            bool: True if the row was updated
        """
        updated = self.filter(pk=pk, **(guard or {})).update(
            version=F('version') + 1,
            updated_at=timezone.now(),
            **changes
        )
        return updated == 1


# =============================================================================
# BASE MODEL
# =============================================================================

class BaseModel(models.Model):
    """
    Base model with audit trail and optimistic concurrency.

    Features:
    - UUID primary key
    - Created/updated timestamps
    - User and IP tracking, populated from an explicit AuthContext
    - Change reason tracking
    - `version` counter incremented on every guarded write
    """

    # Core identification
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Timestamp fields
    created_at = models.DateTimeField("Created At", auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField("Updated At", auto_now=True, db_index=True)

    # User tracking - CharField, users live in the external auth service
    created_by_id = models.CharField(
        "Created By ID",
        max_length=50,
        null=True,
        blank=True,
        db_index=True,
        help_text="ID of user who created this record"
    )
    updated_by_id = models.CharField(
        "Updated By ID",
        max_length=50,
        null=True,
        blank=True,
        db_index=True,
        help_text="ID of user who last updated this record"
    )

    created_from_ip = models.GenericIPAddressField("Created From IP", null=True, blank=True)
    updated_from_ip = models.GenericIPAddressField("Updated From IP", null=True, blank=True)

    # Change reason tracking
    change_reason = models.CharField("Change Reason", max_length=255, blank=True, null=True)

    # Optimistic concurrency
    version = models.PositiveIntegerField("Version", default=0)

    objects = VersionedQuerySet.as_manager()

    class Meta:
        abstract = True

    def stamp(self, context, reason=None):
        """
        Populate audit fields from an explicit request context.

        Args:
            context: AuthContext or None (management commands, shell)
            reason: Optional change reason
        """
        is_new = self._state.adding

        if context is not None:
            if is_new:
                if context.user_id and not self.created_by_id:
                    self.created_by_id = context.user_id
                if context.ip_address and not self.created_from_ip:
                    self.created_from_ip = context.ip_address

            if context.user_id:
                self.updated_by_id = context.user_id
            if context.ip_address:
                self.updated_from_ip = context.ip_address
        elif is_new:
            logger.debug(
                f"No request context when creating {self.__class__.__name__}. "
                f"Audit fields will not be populated."
            )

        if reason:
            self.change_reason = reason[:255]

        return self


def audit_changes(context, reason=None):
    """
    Audit columns for a queryset `.update()` / `transition()` call.

    Returns:
        dict: Field values to merge into the update
    """
    changes = {}
    if context is not None:
        if context.user_id:
            changes['updated_by_id'] = context.user_id
        if context.ip_address:
            changes['updated_from_ip'] = context.ip_address
    if reason:
        changes['change_reason'] = reason[:255]
    return changes
