"""
Data models for the redaction coordinate and versioning layer.
Contains dataclasses for geometry, redaction records, versions, and settings.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from enum import Enum
import copy
import json
import logging
from pathlib import Path


class FitMode(Enum):
    """How a page is fitted into a viewport."""
    WIDTH = "width"
    HEIGHT = "height"
    PAGE = "page"


class RedactionType(Enum):
    """Origin of a redaction box."""
    MANUAL = "manual"
    AI_ASSISTED = "ai-assisted"


class VersionStatus(Enum):
    """Lifecycle state of a redaction version snapshot."""
    DRAFT = "draft"
    SAVED = "saved"
    EXPORTED = "exported"


SUPPORTED_ROTATIONS = (0, 90, 180, 270)

DEFAULT_USER = "staff_user_001"


def utc_timestamp(when: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2026-01-01T12:00:00.000Z."""
    when = when or datetime.now(timezone.utc)
    return when.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + f"{when.microsecond // 1000:03d}Z"


@dataclass
class CoordinatePoint:
    """A point in some coordinate space."""
    x: float
    y: float


@dataclass
class CoordinateRect:
    """
    An axis-aligned rectangle in some named coordinate space.
    (x, y) is the origin corner; which corner depends on the space.
    """
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.x, self.y, self.width, self.height)

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass
class PDFPageDimensions:
    """
    Geometry of a PDF page in points.
    Rotation is one of 0, 90, 180, 270; scale multiplies both axes.
    """
    width: float
    height: float
    scale: float = 1.0
    rotation: int = 0

    @property
    def is_sideways(self) -> bool:
        """True when the page is displayed with width and height swapped."""
        return self.rotation in (90, 270)


@dataclass
class CanvasDimensions:
    """Target raster surface. Offsets are carried but not used by the transforms."""
    width: float
    height: float
    offset_x: float = 0.0
    offset_y: float = 0.0


@dataclass
class CanvasElement:
    """
    A raster surface as laid out on screen.

    width/height are the intrinsic pixel size; left/top/client_width/client_height
    are the rendered bounding box in client (screen) coordinates.
    """
    width: float
    height: float
    left: float = 0.0
    top: float = 0.0
    client_width: Optional[float] = None
    client_height: Optional[float] = None

    def __post_init__(self) -> None:
        if self.client_width is None:
            self.client_width = self.width
        if self.client_height is None:
            self.client_height = self.height


@dataclass(frozen=True)
class ViewportTransform:
    """Result of fitting a page into a viewport. scale_x always equals scale_y."""
    scale_x: float
    scale_y: float
    offset_x: float
    offset_y: float
    rotation: int


@dataclass
class ManualRedaction:
    """
    A user-drawn redaction box in PDF page space.
    Only x, y, width, height and reason change after creation.
    """
    id: str
    record_id: str
    file_name: str
    page_number: int
    x: float
    y: float
    width: float
    height: float
    created_at: str
    created_by: str
    reason: Optional[str] = None
    type: RedactionType = RedactionType.MANUAL

    EDITABLE_FIELDS = ("x", "y", "width", "height", "reason")

    @property
    def rect(self) -> CoordinateRect:
        """The box as a CoordinateRect."""
        return CoordinateRect(self.x, self.y, self.width, self.height)

    def to_dict(self) -> dict:
        """Serialize to dictionary using the persisted field names."""
        data = {
            "id": self.id,
            "recordId": self.record_id,
            "fileName": self.file_name,
            "pageNumber": self.page_number,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "createdAt": self.created_at,
            "createdBy": self.created_by,
            "type": self.type.value,
        }
        if self.reason is not None:
            data["reason"] = self.reason
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ManualRedaction":
        """Deserialize from dictionary."""
        return cls(
            id=data["id"],
            record_id=data["recordId"],
            file_name=data["fileName"],
            page_number=int(data["pageNumber"]),
            x=data["x"],
            y=data["y"],
            width=data["width"],
            height=data["height"],
            created_at=data["createdAt"],
            created_by=data.get("createdBy", DEFAULT_USER),
            reason=data.get("reason"),
            type=RedactionType(data.get("type", RedactionType.MANUAL.value))
        )


@dataclass
class RedactionVersion:
    """
    A point-in-time snapshot of the redaction set for one (record, file) scope.
    The redactions list is a private copy, never shared with the live set.
    """
    version_id: str
    record_id: str
    file_name: str
    redactions: list[ManualRedaction]
    timestamp: str
    status: VersionStatus = VersionStatus.DRAFT
    created_by: str = DEFAULT_USER
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        self.redactions = copy.deepcopy(list(self.redactions))

    def to_dict(self) -> dict:
        """Serialize to dictionary using the persisted field names."""
        data = {
            "versionId": self.version_id,
            "recordId": self.record_id,
            "fileName": self.file_name,
            "redactions": [r.to_dict() for r in self.redactions],
            "timestamp": self.timestamp,
            "status": self.status.value,
            "createdBy": self.created_by,
        }
        if self.notes is not None:
            data["notes"] = self.notes
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RedactionVersion":
        """Deserialize from dictionary."""
        return cls(
            version_id=data["versionId"],
            record_id=data["recordId"],
            file_name=data["fileName"],
            redactions=[ManualRedaction.from_dict(r) for r in data.get("redactions", [])],
            timestamp=data["timestamp"],
            status=VersionStatus(data.get("status", VersionStatus.DRAFT.value)),
            created_by=data.get("createdBy", DEFAULT_USER),
            notes=data.get("notes")
        )


@dataclass
class RedactionSummary:
    """Aggregate view of a scope's redactions. Computed on demand, never stored."""
    record_id: str
    total_redactions: int
    by_page: dict[int, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)
    last_modified: str = ""
    current_version: str = ""
    versions: list[RedactionVersion] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "recordId": self.record_id,
            "totalRedactions": self.total_redactions,
            "byPage": {str(k): v for k, v in self.by_page.items()},
            "byType": dict(self.by_type),
            "lastModified": self.last_modified,
            "currentVersion": self.current_version,
            "versions": [v.to_dict() for v in self.versions],
        }


@dataclass
class StoreSettings:
    """Configuration for the redaction store and its helpers."""
    storage_dir: Optional[str] = None  # None keeps everything in memory
    current_user: str = DEFAULT_USER
    overlap_threshold: float = 0.1
    log_file: Optional[str] = "app.log"
    log_level: str = "INFO"

    def to_dict(self) -> dict:
        """Serialize settings to dictionary."""
        return {
            "storage_dir": self.storage_dir,
            "current_user": self.current_user,
            "overlap_threshold": self.overlap_threshold,
            "log_file": self.log_file,
            "log_level": self.log_level
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StoreSettings":
        """Deserialize settings from dictionary."""
        settings = cls()

        if "storage_dir" in data:
            settings.storage_dir = data["storage_dir"]
        if "current_user" in data:
            settings.current_user = str(data["current_user"])
        if "overlap_threshold" in data:
            settings.overlap_threshold = float(data["overlap_threshold"])
        if "log_file" in data:
            settings.log_file = data["log_file"]
        if "log_level" in data:
            settings.log_level = str(data["log_level"]).upper()

        return settings

    def save_to_file(self, path: Path) -> None:
        """Save settings to JSON file."""
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load_from_file(cls, path: Path) -> "StoreSettings":
        """Load settings from JSON file, or return defaults if file doesn't exist."""
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    return cls.from_dict(json.load(f))
            except (json.JSONDecodeError, KeyError, ValueError, TypeError):
                pass
        return cls()


def configure_logging(settings: StoreSettings) -> None:
    """Route log records to the configured file (or stderr when log_file is None)."""
    logging.basicConfig(
        filename=settings.log_file,
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
