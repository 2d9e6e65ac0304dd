"""
View state for the species map.

The controller is the single writer of the in-memory point and polygon
collections, the pagination cursor, loading/error flags and the current
selection. The presentation layer only reads immutable snapshots.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
import logging
import threading

from .errors import DataError
from .geometry import centroid_of
from .models import Point, PolygonRecord

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


class PageStatus(Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"


class PaginationStatus(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class Selection:
    """Nothing, one point, or one polygon with its popup anchor."""
    point: Optional[Point] = None
    polygon: Optional[PolygonRecord] = None
    anchor: Optional[Tuple[float, float]] = None

    @property
    def kind(self) -> Optional[str]:
        if self.point is not None:
            return "point"
        if self.polygon is not None:
            return "polygon"
        return None

    @property
    def is_empty(self) -> bool:
        return self.kind is None


NO_SELECTION = Selection()


@dataclass(frozen=True)
class ViewSnapshot:
    """Read-only view of the controller state at one revision."""
    status: PageStatus
    pagination_status: PaginationStatus
    points: Tuple[Point, ...]
    polygons: Tuple[PolygonRecord, ...]
    selection: Selection
    total_count: Optional[int]
    error_message: Optional[str]
    pagination_error: Optional[str]
    revision: int

    @property
    def is_loading(self) -> bool:
        return self.status == PageStatus.INITIALIZING

    @property
    def is_loading_more(self) -> bool:
        return self.pagination_status == PaginationStatus.FETCHING


class ViewStateController:
    """
    Owns the species map state and the fetch-paginate-merge-select cycle.

    Args:
        data_source: Object providing fetch_points, fetch_polygon_page and
            subscribe_to_point_changes
        page_size: Number of polygon records requested per page
    """

    def __init__(self, data_source, page_size: int = DEFAULT_PAGE_SIZE):
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self.data_source = data_source
        self.page_size = page_size

        self._lock = threading.RLock()
        self._status = PageStatus.INITIALIZING
        self._pagination_status = PaginationStatus.IDLE
        self._points: Dict[str, Point] = {}
        self._polygons: List[PolygonRecord] = []
        self._polygon_index: Dict[int, PolygonRecord] = {}
        self._total_count: Optional[int] = None
        self._selection = NO_SELECTION
        self._error_message: Optional[str] = None
        self._pagination_error: Optional[str] = None
        self._revision = 0

        self._initialized = False
        self._subscription = None
        self._torn_down = False

    # ------------------------------------------------------------------ reads

    @property
    def status(self) -> PageStatus:
        return self._status

    @property
    def pagination_status(self) -> PaginationStatus:
        return self._pagination_status

    @property
    def selection(self) -> Selection:
        return self._selection

    @property
    def points(self) -> Tuple[Point, ...]:
        with self._lock:
            return tuple(self._points.values())

    @property
    def polygons(self) -> Tuple[PolygonRecord, ...]:
        with self._lock:
            return tuple(self._polygons)

    @property
    def error_message(self) -> Optional[str]:
        return self._error_message

    @property
    def pagination_error(self) -> Optional[str]:
        return self._pagination_error

    def point_by_id(self, point_id: str) -> Optional[Point]:
        with self._lock:
            return self._points.get(point_id)

    def snapshot(self) -> ViewSnapshot:
        """Consistent copy of the current state for rendering."""
        with self._lock:
            return ViewSnapshot(
                status=self._status,
                pagination_status=self._pagination_status,
                points=tuple(self._points.values()),
                polygons=tuple(self._polygons),
                selection=self._selection,
                total_count=self._total_count,
                error_message=self._error_message,
                pagination_error=self._pagination_error,
                revision=self._revision,
            )

    def _touch(self) -> None:
        self._revision += 1

    # -------------------------------------------------------------- lifecycle

    def initialize(self) -> Callable[[], bool]:
        """
        Load points and the first polygon page, then subscribe to point changes.

        Both fetches run concurrently since they fill disjoint collections.
        A failure of either puts the page in the terminal error state while
        keeping whatever did load.

        Returns:
            Teardown callable that cancels the subscription
        """
        with self._lock:
            if self._initialized:
                raise RuntimeError("View state already initialized")
            self._initialized = True
            self._status = PageStatus.INITIALIZING
            self._touch()

        errors = []
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="species-map-startup") as pool:
            points_future = pool.submit(self.data_source.fetch_points)
            polygons_future = pool.submit(self._fetch_next_page, True)

            try:
                points = points_future.result()
                with self._lock:
                    for point in points:
                        self._points[point.id] = point
                    self._touch()
            except DataError as e:
                errors.append(e)

            try:
                polygons_future.result()
            except DataError as e:
                errors.append(e)

        if not errors:
            try:
                self._subscription = self.data_source.subscribe_to_point_changes(
                    self.apply_insert, self.apply_update, self.apply_delete
                )
            except DataError as e:
                errors.append(e)

        with self._lock:
            if errors:
                self._status = PageStatus.ERROR
                self._error_message = str(errors[0]) or "Failed to load data"
                logger.error(f"Species map startup failed: {self._error_message}")
            else:
                self._status = PageStatus.READY
                logger.info(f"Species map ready with {len(self._points)} points "
                            f"and {len(self._polygons)} polygon records")
            self._touch()

        return self.teardown

    def teardown(self) -> bool:
        """
        Cancel the change subscription.

        Returns:
            True if this call cancelled it, False if there was nothing to cancel
        """
        with self._lock:
            if self._torn_down:
                return False
            self._torn_down = True
            subscription = self._subscription
            self._subscription = None

        if subscription is None:
            return False
        subscription.cancel()
        return True

    # ------------------------------------------------------------- pagination

    def request_more_polygons(self) -> bool:
        """
        Load the next page of polygon records.

        No-op unless the page is ready, while a fetch is in flight, or once
        every record is loaded. A failed page leaves loaded data untouched and
        can be retried by calling again.

        Returns:
            True if a fetch was issued
        """
        with self._lock:
            if self._status != PageStatus.READY:
                return False
        try:
            return self._fetch_next_page(False)
        except DataError:
            # Recorded as pagination_error by _fetch_next_page
            return True

    def _fetch_next_page(self, startup: bool) -> bool:
        with self._lock:
            if self._pagination_status in (PaginationStatus.FETCHING, PaginationStatus.EXHAUSTED):
                return False
            offset = len(self._polygons)
            self._pagination_status = PaginationStatus.FETCHING
            self._pagination_error = None
            self._touch()

        try:
            page, total_count = self.data_source.fetch_polygon_page(offset, self.page_size)
        except DataError as e:
            with self._lock:
                self._pagination_status = PaginationStatus.IDLE
                if not startup:
                    self._pagination_error = str(e) or "Failed to load polygon data"
                    logger.warning(f"Polygon page at offset {offset} failed: {e}")
                self._touch()
            raise

        with self._lock:
            for record in page:
                if record.gid in self._polygon_index:
                    logger.warning(f"Skipping duplicate polygon record gid={record.gid}")
                    continue
                self._polygons.append(record)
                self._polygon_index[record.gid] = record

            if total_count is not None:
                self._total_count = total_count

            known_total = total_count is not None
            if not page or (known_total and offset + self.page_size >= total_count):
                self._pagination_status = PaginationStatus.EXHAUSTED
                logger.info(f"All polygon records loaded ({len(self._polygons)})")
            else:
                self._pagination_status = PaginationStatus.IDLE
            self._touch()

        return True

    def dismiss_pagination_error(self) -> None:
        with self._lock:
            self._pagination_error = None
            self._touch()

    # -------------------------------------------------------------- selection

    def select_point(self, point: Point) -> None:
        """Select a point; any polygon selection is cleared."""
        with self._lock:
            self._selection = Selection(point=point, anchor=point.coordinates)
            self._touch()

    def select_point_by_id(self, point_id: str) -> bool:
        with self._lock:
            point = self._points.get(point_id)
            if point is None:
                return False
            self.select_point(point)
            return True

    def select_polygon(self, gid: int) -> bool:
        """
        Select a loaded polygon record by gid, anchored at its vertex average.

        Unknown gids (e.g. features not yet loaded) and records without a
        geometry leave the selection as is.

        Returns:
            True if the selection changed
        """
        with self._lock:
            record = self._polygon_index.get(gid)
            if record is None:
                logger.debug(f"Polygon gid={gid} is not loaded, selection unchanged")
                return False
            if record.geom is None:
                logger.debug(f"Polygon gid={gid} has no geometry, selection unchanged")
                return False
            self._selection = Selection(polygon=record, anchor=centroid_of(record.geom))
            self._touch()
            return True

    def clear_selection(self) -> None:
        with self._lock:
            self._selection = NO_SELECTION
            self._touch()

    def close_point_popup(self) -> None:
        with self._lock:
            if self._selection.point is not None:
                self.clear_selection()

    def close_polygon_popup(self) -> None:
        with self._lock:
            if self._selection.polygon is not None:
                self.clear_selection()

    # ----------------------------------------------------------- live updates

    def _upsert_point(self, point: Point) -> None:
        with self._lock:
            # Assigning an existing key keeps its position
            self._points[point.id] = point
            if self._selection.point is not None and self._selection.point.id == point.id:
                self._selection = Selection(point=point, anchor=point.coordinates)
            self._touch()

    def apply_insert(self, point: Point) -> None:
        """Append a new point; a duplicate delivery updates in place."""
        self._upsert_point(point)

    def apply_update(self, point: Point) -> None:
        """Replace the point with the same id, appending if unknown."""
        self._upsert_point(point)

    def apply_delete(self, point_id: str) -> None:
        """Remove the point with this id if present."""
        with self._lock:
            if self._points.pop(point_id, None) is None:
                return
            if self._selection.point is not None and self._selection.point.id == point_id:
                self._selection = NO_SELECTION
            self._touch()
