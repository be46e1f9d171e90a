"""
Redaction storage and versioning.
Handles CRUD for user-drawn redaction boxes and keeps an append-only history
of snapshots for every (record, file) scope.
"""

import logging
import random
import string
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from errors import PersistenceWriteError, VersionNotFoundError
from models import (
    CoordinateRect, ManualRedaction, RedactionVersion, RedactionSummary,
    RedactionType, VersionStatus, StoreSettings, configure_logging, utc_timestamp
)
from storage import (
    KeyValueStore, open_store, read_json_list, write_json_list, remove_key,
    redactions_key, versions_key
)
from transformer import CoordinateTransformer

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

CLEARED_NOTE = "Cleared all redactions"


def _generate_id(prefix: str) -> str:
    """Unique id: prefix, epoch milliseconds and a random base-36 suffix."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def _parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (a trailing Z is accepted). None if unparseable."""
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _timestamp_key(value: str) -> datetime:
    return _parse_timestamp(value) or _EPOCH


class RedactionService:
    """
    Manual redaction CRUD with version snapshots.

    Every operation is a coroutine but runs synchronously against the store;
    there is no locking between processes, so the last writer wins on the
    current set. Version lists are only ever appended to.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        settings: Optional[StoreSettings] = None
    ):
        self.settings = settings or StoreSettings()
        self.store = store if store is not None else open_store(self.settings.storage_dir)
        self.transformer = CoordinateTransformer()

    @classmethod
    def from_settings_file(cls, path: Path) -> "RedactionService":
        """Build a service from a settings JSON file and set up logging for it."""
        settings = StoreSettings.load_from_file(Path(path))
        configure_logging(settings)
        logger.info(f"Redaction store opened (storage_dir={settings.storage_dir})")
        return cls(settings=settings)

    @property
    def current_user(self) -> str:
        return self.settings.current_user

    # --- Current redaction set ---

    def _read_redactions(self, record_id: str, file_name: str) -> list[ManualRedaction]:
        key = redactions_key(record_id, file_name)
        try:
            return [ManualRedaction.from_dict(item) for item in read_json_list(self.store, key)]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"Error retrieving redactions from {key}: {e}")
            return []

    def _write_redactions(self, record_id: str, file_name: str, redactions: list[ManualRedaction]) -> None:
        write_json_list(
            self.store,
            redactions_key(record_id, file_name),
            [r.to_dict() for r in redactions]
        )

    async def _commit(self, record_id: str, file_name: str, redactions: list[ManualRedaction]) -> None:
        """
        Store a changed set and its draft snapshot.

        If the snapshot cannot be stored the previous set is written back
        before the error propagates, so a failed mutation leaves no trace.
        """
        key = redactions_key(record_id, file_name)
        previous = read_json_list(self.store, key)

        self._write_redactions(record_id, file_name, redactions)
        try:
            await self.create_version(record_id, file_name, redactions, VersionStatus.DRAFT)
        except PersistenceWriteError:
            try:
                if previous:
                    write_json_list(self.store, key, previous)
                else:
                    remove_key(self.store, key)
            except PersistenceWriteError as e:
                logger.error(f"Could not restore {key} after a failed snapshot: {e}")
            raise

    async def add_redaction(
        self,
        record_id: str,
        file_name: str,
        page_number: int,
        coordinates: CoordinateRect,
        reason: Optional[str] = None,
        redaction_type: RedactionType = RedactionType.MANUAL
    ) -> ManualRedaction:
        """
        Add a redaction box and snapshot the updated set as a draft version.

        Coordinates are stored as given; no validation or overlap rejection
        happens here (see check_overlap).

        Raises:
            PersistenceWriteError: the set or its snapshot could not be stored
        """
        redaction = ManualRedaction(
            id=_generate_id("redaction"),
            record_id=record_id,
            file_name=file_name,
            page_number=page_number,
            x=coordinates.x,
            y=coordinates.y,
            width=coordinates.width,
            height=coordinates.height,
            created_at=utc_timestamp(),
            created_by=self.current_user,
            reason=reason,
            type=RedactionType(redaction_type)
        )

        redactions = await self.get_redactions_for_record(record_id, file_name)
        redactions.append(redaction)

        await self._commit(record_id, file_name, redactions)

        logger.info(f"Added redaction {redaction.id} on page {page_number} of {record_id}/{file_name}")
        return redaction

    async def update_redaction(
        self,
        record_id: str,
        file_name: str,
        redaction_id: str,
        updates: dict[str, Any]
    ) -> Optional[ManualRedaction]:
        """
        Merge position, size or reason changes into an existing redaction.
        Other keys in updates are ignored. Returns None if the id is unknown.
        """
        redactions = await self.get_redactions_for_record(record_id, file_name)
        target = next((r for r in redactions if r.id == redaction_id), None)
        if target is None:
            return None

        for name in ManualRedaction.EDITABLE_FIELDS:
            if name in updates:
                setattr(target, name, updates[name])

        await self._commit(record_id, file_name, redactions)

        logger.debug(f"Updated redaction {redaction_id} in {record_id}/{file_name}")
        return target

    async def remove_redaction(self, record_id: str, file_name: str, redaction_id: str) -> bool:
        """Remove a redaction by id. Returns False if nothing was removed."""
        redactions = await self.get_redactions_for_record(record_id, file_name)
        remaining = [r for r in redactions if r.id != redaction_id]

        if len(remaining) == len(redactions):
            return False

        await self._commit(record_id, file_name, remaining)

        logger.info(f"Removed redaction {redaction_id} from {record_id}/{file_name}")
        return True

    async def get_redactions_for_record(self, record_id: str, file_name: str) -> list[ManualRedaction]:
        """All redactions of a scope, oldest first. Unreadable data gives an empty list."""
        redactions = self._read_redactions(record_id, file_name)
        return sorted(redactions, key=lambda r: _timestamp_key(r.created_at))

    async def get_redactions_for_page(
        self,
        record_id: str,
        file_name: str,
        page_number: int
    ) -> list[ManualRedaction]:
        """Redactions of a scope that sit on one page."""
        redactions = await self.get_redactions_for_record(record_id, file_name)
        return [r for r in redactions if r.page_number == page_number]

    # --- Versions ---

    def _read_versions(self, record_id: str, file_name: str) -> list[RedactionVersion]:
        """Versions in stored (creation) order."""
        key = versions_key(record_id, file_name)
        try:
            return [RedactionVersion.from_dict(item) for item in read_json_list(self.store, key)]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"Error retrieving version history from {key}: {e}")
            return []

    def _write_versions(self, record_id: str, file_name: str, versions: list[RedactionVersion]) -> None:
        write_json_list(
            self.store,
            versions_key(record_id, file_name),
            [v.to_dict() for v in versions]
        )

    async def create_version(
        self,
        record_id: str,
        file_name: str,
        redactions: list[ManualRedaction],
        status: VersionStatus = VersionStatus.DRAFT,
        notes: Optional[str] = None
    ) -> RedactionVersion:
        """
        Append a snapshot of redactions to the scope's version list.
        The snapshot is a deep copy; later changes to redactions do not reach it.
        """
        version = RedactionVersion(
            version_id=_generate_id("version"),
            record_id=record_id,
            file_name=file_name,
            redactions=redactions,
            timestamp=utc_timestamp(),
            status=VersionStatus(status),
            created_by=self.current_user,
            notes=notes
        )

        versions = self._read_versions(record_id, file_name)
        versions.append(version)
        self._write_versions(record_id, file_name, versions)

        logger.debug(
            f"Created {version.status.value} version {version.version_id} "
            f"with {len(version.redactions)} redactions for {record_id}/{file_name}"
        )
        return version

    async def get_version_history(self, record_id: str, file_name: str) -> list[RedactionVersion]:
        """All versions of a scope, newest first."""
        versions = self._read_versions(record_id, file_name)
        ordered = sorted(
            enumerate(versions),
            key=lambda item: (_timestamp_key(item[1].timestamp), item[0]),
            reverse=True
        )
        return [version for _, version in ordered]

    async def get_version(
        self,
        record_id: str,
        file_name: str,
        version_id: str
    ) -> Optional[RedactionVersion]:
        """Look up one version, or None."""
        for version in self._read_versions(record_id, file_name):
            if version.version_id == version_id:
                return version
        return None

    async def save_version(
        self,
        record_id: str,
        file_name: str,
        notes: Optional[str] = None
    ) -> RedactionVersion:
        """Snapshot the current set as a saved version."""
        current = await self.get_redactions_for_record(record_id, file_name)
        version = await self.create_version(record_id, file_name, current, VersionStatus.SAVED, notes)
        logger.info(f"Saved version {version.version_id} for {record_id}/{file_name}")
        return version

    async def load_version(self, record_id: str, file_name: str, version_id: str) -> list[ManualRedaction]:
        """
        Replace the current set with a version's snapshot and return it.

        Raises:
            VersionNotFoundError: no version with that id exists in the scope
            PersistenceWriteError: the current set could not be overwritten
        """
        version = await self.get_version(record_id, file_name, version_id)
        if version is None:
            raise VersionNotFoundError(version_id, record_id, file_name)

        self._write_redactions(record_id, file_name, version.redactions)

        logger.info(f"Loaded version {version_id} into {record_id}/{file_name}")
        return version.redactions

    async def mark_version_exported(self, record_id: str, file_name: str, version_id: str) -> bool:
        """Set a version's status to exported. Returns False if it does not exist."""
        versions = self._read_versions(record_id, file_name)
        target = next((v for v in versions if v.version_id == version_id), None)
        if target is None:
            return False

        target.status = VersionStatus.EXPORTED
        self._write_versions(record_id, file_name, versions)

        logger.info(f"Marked version {version_id} of {record_id}/{file_name} as exported")
        return True

    # --- Aggregates and bulk operations ---

    async def get_redaction_summary(self, record_id: str, file_name: str) -> RedactionSummary:
        """
        Counts by page and type, last modification time and version list.

        last_modified is the latest created_at of the current set, or the
        present moment when the set is empty.
        """
        redactions = await self.get_redactions_for_record(record_id, file_name)
        versions = await self.get_version_history(record_id, file_name)

        by_page: dict[int, int] = {}
        by_type: dict[str, int] = {}
        for r in redactions:
            by_page[r.page_number] = by_page.get(r.page_number, 0) + 1
            by_type[r.type.value] = by_type.get(r.type.value, 0) + 1

        created = [t for t in (_parse_timestamp(r.created_at) for r in redactions) if t is not None]
        last_modified = utc_timestamp(max(created)) if created else utc_timestamp()

        return RedactionSummary(
            record_id=record_id,
            total_redactions=len(redactions),
            by_page=by_page,
            by_type=by_type,
            last_modified=last_modified,
            current_version=versions[0].version_id if versions else "",
            versions=versions
        )

    async def clear_all_redactions(self, record_id: str, file_name: str) -> bool:
        """
        Delete the current set after snapshotting it.

        The snapshot is a draft version noted "Cleared all redactions" so the
        cleared set can be restored with load_version. Returns False if the
        snapshot or the deletion fails.
        """
        try:
            current = await self.get_redactions_for_record(record_id, file_name)
            if current:
                await self.create_version(
                    record_id, file_name, current, VersionStatus.DRAFT, CLEARED_NOTE
                )
            remove_key(self.store, redactions_key(record_id, file_name))
        except PersistenceWriteError as e:
            logger.error(f"Error clearing redactions for {record_id}/{file_name}: {e}")
            return False

        logger.info(f"Cleared {len(current)} redactions from {record_id}/{file_name}")
        return True

    async def check_overlap(
        self,
        record_id: str,
        file_name: str,
        page_number: int,
        coordinates: CoordinateRect,
        threshold: Optional[float] = None
    ) -> list[ManualRedaction]:
        """
        Existing redactions on a page that a candidate box overlaps.

        The overlap of each pair is measured against the smaller of the two
        areas, and a redaction is returned when it strictly exceeds threshold
        (default: settings.overlap_threshold). Advisory only.
        """
        if threshold is None:
            threshold = self.settings.overlap_threshold

        page_redactions = await self.get_redactions_for_page(record_id, file_name, page_number)
        ratios = self.transformer.overlap_ratios(coordinates, [r.rect for r in page_redactions])

        return [r for r, ratio in zip(page_redactions, ratios) if ratio > threshold]
