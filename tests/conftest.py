"""Shared fixtures for the redaction store tests."""

import pytest

from models import CanvasDimensions, CoordinateRect, PDFPageDimensions, StoreSettings
from redaction_service import RedactionService
from storage import MemoryStore


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def settings() -> StoreSettings:
    return StoreSettings(log_file=None)


@pytest.fixture
def service(store: MemoryStore, settings: StoreSettings) -> RedactionService:
    return RedactionService(store=store, settings=settings)


@pytest.fixture
def a4_page() -> PDFPageDimensions:
    """A4 page in points, no scale, no rotation."""
    return PDFPageDimensions(width=595, height=842, scale=1.0, rotation=0)


@pytest.fixture
def a4_canvas() -> CanvasDimensions:
    """1:1 canvas for the A4 page."""
    return CanvasDimensions(width=595, height=842)


@pytest.fixture
def sample_rect() -> CoordinateRect:
    return CoordinateRect(x=100, y=200, width=150, height=50)
