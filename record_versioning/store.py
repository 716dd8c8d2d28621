"""
Versioned store: the append-only version chain of every entity.

Exactly one version per entity is CURRENT. A commit retires the current
version and inserts its successor in one transaction; the retire is a
conditional update on the version the commit was computed from, so a commit
based on a stale read fails instead of overwriting a concurrent writer.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import IntegrityError
import structlog

from shared.auth import Actor
from shared.database import DatabaseManager, EntityVersionModel, utc_now
from shared.errors import (
    ConcurrentModificationError,
    ConflictError,
    IntegrityViolationError,
    NotFoundError,
)

from .change_reason import ChangeReasonPolicy
from .differ import diff
from .field_permissions import FieldPermissionPolicy
from .models import (
    CurrentFlag,
    EntityType,
    EntityVersion,
    FieldChange,
    VersionHistory,
    VersionTimelineEntry,
)

logger = structlog.get_logger(__name__)

INITIAL_VERSION = 1


class VersionedStore:
    """Reads and commits entity versions."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        permission_policy: Optional[FieldPermissionPolicy] = None,
        reason_policy: Optional[ChangeReasonPolicy] = None,
    ):
        self.db_manager = db_manager
        self.permission_policy = permission_policy or FieldPermissionPolicy()
        self.reason_policy = reason_policy or ChangeReasonPolicy()

    def _filtered(self, session, entity_id: str, entity_type: Optional[EntityType]):
        query = session.query(EntityVersionModel).filter(EntityVersionModel.entity_id == entity_id)
        if entity_type is not None:
            query = query.filter(EntityVersionModel.entity_type == entity_type.value)
        return query

    def create(
        self,
        entity_type: EntityType,
        entity_id: str,
        attributes: Mapping[str, Any],
        actor: Actor,
        reason: Optional[str] = None,
    ) -> EntityVersion:
        """
        Commit the first version of a new entity.

        Raises:
            ConflictError: If the entity id already has versions
        """
        initial = diff({}, attributes)
        change_reason = (reason or "").strip() or f"Record created by {actor.identity}"
        now = utc_now()

        try:
            with self.db_manager.session_scope() as session:
                if self._filtered(session, entity_id, None).first() is not None:
                    raise ConflictError(f"Entity {entity_id} already exists")

                row = EntityVersionModel(
                    entity_id=entity_id,
                    entity_type=entity_type.value,
                    version=INITIAL_VERSION,
                    is_current=CurrentFlag.CURRENT.value,
                    attributes=initial.next_snapshot,
                    changed_fields=initial.changed_fields,
                    change_reason=change_reason,
                    previous_version=None,
                    updated_by=actor.identity,
                    updated_at=now,
                    created_at=now,
                )
                session.add(row)
                session.flush()
                created = EntityVersion.model_validate(row)
        except IntegrityError as e:
            raise ConflictError(f"Entity {entity_id} already exists") from e

        logger.info("Entity created",
                    entity_id=entity_id,
                    entity_type=entity_type.value,
                    updated_by=actor.identity)
        return created

    def get_current(self, entity_id: str, entity_type: Optional[EntityType] = None) -> EntityVersion:
        """
        The CURRENT version of an entity.

        Raises:
            NotFoundError: If the entity has no current version
            IntegrityViolationError: If more than one version is CURRENT
        """
        with self.db_manager.session_scope() as session:
            rows = self._filtered(session, entity_id, entity_type).filter(
                EntityVersionModel.is_current == CurrentFlag.CURRENT.value
            ).all()

            if len(rows) > 1:
                versions = sorted(row.version for row in rows)
                logger.critical("Multiple current versions found",
                                entity_id=entity_id,
                                versions=versions)
                raise IntegrityViolationError(
                    f"Entity {entity_id} has {len(rows)} current versions: {versions}"
                )
            if not rows:
                raise NotFoundError(entity_type.value.title() if entity_type else "Entity",
                                    f"Entity {entity_id} not found")

            return EntityVersion.model_validate(rows[0])

    def get_version(
        self,
        entity_id: str,
        version: int,
        entity_type: Optional[EntityType] = None,
    ) -> EntityVersion:
        with self.db_manager.session_scope() as session:
            row = self._filtered(session, entity_id, entity_type).filter(
                EntityVersionModel.version == version
            ).first()
            if row is None:
                raise NotFoundError("Version", f"Version {version} of entity {entity_id} not found")
            return EntityVersion.model_validate(row)

    def list_versions(self, entity_id: str, entity_type: Optional[EntityType] = None) -> List[EntityVersion]:
        """All versions of an entity, newest first."""
        with self.db_manager.session_scope() as session:
            rows = self._filtered(session, entity_id, entity_type).order_by(
                EntityVersionModel.version.desc()
            ).all()
            if not rows:
                raise NotFoundError("Entity", f"Entity {entity_id} not found")
            return [EntityVersion.model_validate(row) for row in rows]

    def list_current(self, entity_type: EntityType) -> List[EntityVersion]:
        """Current versions of every entity of a type."""
        with self.db_manager.session_scope() as session:
            rows = session.query(EntityVersionModel).filter(
                EntityVersionModel.entity_type == entity_type.value,
                EntityVersionModel.is_current == CurrentFlag.CURRENT.value
            ).order_by(EntityVersionModel.updated_at.asc(), EntityVersionModel.id.asc()).all()
            return [EntityVersion.model_validate(row) for row in rows]

    def page_current(
        self,
        entity_type: EntityType,
        filters: Optional[Mapping[str, str]] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[EntityVersion], int]:
        """
        One page of current versions of a type and the total matching count.

        ``filters`` match top-level string attributes exactly.
        """
        with self.db_manager.session_scope() as session:
            query = session.query(EntityVersionModel).filter(
                EntityVersionModel.entity_type == entity_type.value,
                EntityVersionModel.is_current == CurrentFlag.CURRENT.value
            )
            for name, value in (filters or {}).items():
                query = query.filter(EntityVersionModel.attributes[name].as_string() == value)

            total = query.count()
            rows = query.order_by(
                EntityVersionModel.updated_at.asc(), EntityVersionModel.id.asc()
            ).offset(offset).limit(limit).all()
            return [EntityVersion.model_validate(row) for row in rows], total

    def commit(
        self,
        entity_id: str,
        proposed: Mapping[str, Any],
        actor: Actor,
        supplied_reason: Optional[str] = None,
        entity_type: Optional[EntityType] = None,
        expected_version: Optional[int] = None,
        min_reason_length: Optional[int] = None,
    ) -> EntityVersion:
        """
        Commit a patch as the next version of an entity.

        Returns the current version unchanged when the patch changes nothing.

        Raises:
            NotFoundError: If the entity has no current version
            ForbiddenError: If a changed field is outside the actor's role
            InvalidReasonError: If a critical field changed without a valid reason
            ConcurrentModificationError: If the current version moved on
        """
        current = self.get_current(entity_id, entity_type)

        if expected_version is not None and expected_version != current.version:
            raise ConcurrentModificationError(
                f"Entity {entity_id} is at version {current.version}, not {expected_version}"
            )

        changes = diff(current.attributes, proposed)
        if changes.is_empty:
            logger.debug("No changes detected", entity_id=entity_id, version=current.version)
            return current

        self.permission_policy.check(current.entity_type, changes.changed_fields, actor.role)
        change_reason = self.reason_policy.resolve(
            current.entity_type,
            changes.changed_fields,
            supplied_reason,
            actor,
            min_length=min_reason_length,
        )

        next_version = current.version + 1
        now = utc_now()

        try:
            with self.db_manager.session_scope() as session:
                retired = session.query(EntityVersionModel).filter(
                    EntityVersionModel.entity_id == entity_id,
                    EntityVersionModel.version == current.version,
                    EntityVersionModel.is_current == CurrentFlag.CURRENT.value
                ).update(
                    {EntityVersionModel.is_current: CurrentFlag.HISTORICAL.value},
                    synchronize_session=False
                )
                if retired != 1:
                    raise ConcurrentModificationError(
                        f"Version {current.version} of entity {entity_id} is no longer current"
                    )

                row = EntityVersionModel(
                    entity_id=entity_id,
                    entity_type=current.entity_type.value,
                    version=next_version,
                    is_current=CurrentFlag.CURRENT.value,
                    attributes=changes.next_snapshot,
                    changed_fields=changes.changed_fields,
                    change_reason=change_reason,
                    previous_version=current.version,
                    updated_by=actor.identity,
                    updated_at=now,
                    created_at=now,
                )
                session.add(row)
                session.flush()
                committed = EntityVersion.model_validate(row)
        except ConcurrentModificationError:
            logger.warning("Concurrent modification detected",
                           entity_id=entity_id,
                           seen_version=current.version)
            raise
        except IntegrityError as e:
            logger.warning("Version already committed by another writer",
                           entity_id=entity_id,
                           version=next_version)
            raise ConcurrentModificationError(
                f"Version {next_version} of entity {entity_id} was committed concurrently"
            ) from e

        logger.info("Version committed",
                    entity_id=entity_id,
                    entity_type=committed.entity_type.value,
                    version=next_version,
                    changed_fields=changes.changed_fields,
                    updated_by=actor.identity)
        return committed

    def history(self, entity_id: str, entity_type: Optional[EntityType] = None) -> VersionHistory:
        """Change timeline with per-field old and new values, newest first."""
        versions = self.list_versions(entity_id, entity_type)
        by_number: Dict[int, EntityVersion] = {v.version: v for v in versions}

        timeline = []
        for version in versions:
            previous = by_number.get(version.previous_version) if version.previous_version else None
            changes = [
                FieldChange(
                    field=name,
                    old_value=previous.get(name) if previous else None,
                    new_value=version.get(name),
                )
                for name in version.changed_fields
            ]
            timeline.append(VersionTimelineEntry(
                version=version.version,
                timestamp=version.updated_at,
                user=version.updated_by,
                reason=version.change_reason,
                is_current=version.is_current == CurrentFlag.CURRENT,
                changes=changes,
            ))

        current = next((v for v in versions if v.is_current == CurrentFlag.CURRENT), versions[0])
        return VersionHistory(
            entity_id=entity_id,
            entity_type=current.entity_type,
            current_version=current.version,
            total_versions=len(versions),
            timeline=timeline,
        )
