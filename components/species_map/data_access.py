"""
Data access for the species map.

Wraps the PostgreSQL/PostGIS database behind three operations: a one-shot
fetch of point records, a paginated fetch of polygon records and a live
change subscription for points built on LISTEN/NOTIFY.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple
import json
import logging
import select
import threading

import psycopg2
from psycopg2 import sql
from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT
from psycopg2.extras import RealDictCursor

from .errors import DataError
from .models import Point, PolygonRecord

logger = logging.getLogger(__name__)

PointHandler = Callable[[Point], None]
DeleteHandler = Callable[[str], None]


class PointSubscription:
    """
    Background listener delivering point change notifications.

    Each notification payload is a JSON object of the form
    ``{"type": "INSERT" | "UPDATE" | "DELETE", "record": {...}, "old_record": {...}}``
    as emitted by the ``notify_points_change`` trigger.
    """

    def __init__(self, connection, channel: str,
                 on_insert: PointHandler, on_update: PointHandler, on_delete: DeleteHandler,
                 poll_seconds: float = 1.0):
        self.connection = connection
        self.channel = channel
        self.on_insert = on_insert
        self.on_update = on_update
        self.on_delete = on_delete
        self.poll_seconds = poll_seconds
        self.error: Optional[Exception] = None
        self._stop = threading.Event()
        self._cancelled = False
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._run, name=f"listen-{channel}", daemon=True)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> "PointSubscription":
        self._thread.start()
        logger.info(f"Subscribed to point changes on channel '{self.channel}'")
        return self

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                ready, _, _ = select.select([self.connection], [], [], self.poll_seconds)
                if not ready:
                    continue
                self.connection.poll()
                while self.connection.notifies:
                    notify = self.connection.notifies.pop(0)
                    self.dispatch(notify.payload)
            except (psycopg2.Error, OSError, ValueError) as e:
                if self._stop.is_set():
                    break
                self.error = e
                logger.error(f"Point change listener stopped: {e}")
                break

    def dispatch(self, payload: str) -> None:
        """Decode one notification payload and call the matching handler."""
        try:
            message = json.loads(payload)
            event_type = str(message.get('type', '')).upper()
            if event_type == 'INSERT':
                self.on_insert(Point.from_row(message['record']))
            elif event_type == 'UPDATE':
                self.on_update(Point.from_row(message['record']))
            elif event_type == 'DELETE':
                old_record = message.get('old_record') or {}
                if old_record.get('id') is None:
                    raise DataError("Delete notification without id")
                self.on_delete(str(old_record['id']))
            else:
                logger.warning(f"Ignoring notification with unknown type: {event_type!r}")
        except (DataError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Skipping malformed point notification: {e}")

    def cancel(self) -> bool:
        """
        Stop listening and close the connection.

        Returns:
            True on the first call, False if already cancelled
        """
        with self._lock:
            if self._cancelled:
                logger.warning(f"Subscription on '{self.channel}' already cancelled")
                return False
            self._cancelled = True

        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.poll_seconds * 2 + 1)

        try:
            if not self.connection.closed:
                with self.connection.cursor() as cur:
                    cur.execute(sql.SQL("UNLISTEN {}").format(sql.Identifier(self.channel)))
        except psycopg2.Error as e:
            logger.warning(f"UNLISTEN failed on '{self.channel}': {e}")
        finally:
            self.connection.close()

        logger.info(f"Unsubscribed from point changes on channel '{self.channel}'")
        return True


class SpeciesDataSource:
    """Queries points and species presence polygons from PostGIS."""

    def __init__(self, dsn: str,
                 points_table: str = "points",
                 polygon_view: str = "simplified_abalones",
                 notify_channel: str = "points_changes",
                 poll_seconds: float = 1.0,
                 connect: Callable[..., Any] = psycopg2.connect):
        self.dsn = dsn
        self.points_table = points_table
        self.polygon_view = polygon_view
        self.notify_channel = notify_channel
        self.poll_seconds = poll_seconds
        self._connect = connect
        self._conn = None
        self._conn_lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "SpeciesDataSource":
        """Create a data source from a SpeciesMapConfig."""
        data = config.get_data_settings()
        return cls(
            config.get_database_url(),
            points_table=data["points_table"],
            polygon_view=data["polygon_view"],
            notify_channel=data["notify_channel"],
            poll_seconds=float(data["listen_poll_seconds"]),
        )

    def _connection(self):
        if self._conn is None or self._conn.closed:
            self._conn = self._connect(self.dsn)
        return self._conn

    def _query(self, query, params: Optional[Tuple] = None) -> List[Dict[str, Any]]:
        """Run a read query and return rows as dictionaries."""
        # One query at a time per connection; startup fetches share it
        with self._conn_lock:
            try:
                conn = self._connection()
                with conn:
                    with conn.cursor(cursor_factory=RealDictCursor) as cur:
                        cur.execute(query, params)
                        return [dict(row) for row in cur.fetchall()]
            except psycopg2.Error as e:
                if self._conn is not None and self._conn.closed:
                    self._conn = None
                raise DataError(f"Database query failed: {e}") from e

    def fetch_points(self) -> List[Point]:
        """Fetch every point record."""
        query = sql.SQL(
            "SELECT id::text AS id, name, description, "
            "ST_X(coordinates) AS lon, ST_Y(coordinates) AS lat, created_at "
            "FROM {}"
        ).format(sql.Identifier(self.points_table))

        points = [Point.from_row(row) for row in self._query(query)]
        logger.info(f"Fetched {len(points)} points")
        return points

    def fetch_polygon_page(self, start_offset: int, page_size: int) -> Tuple[List[PolygonRecord], Optional[int]]:
        """
        Fetch one page of polygon records ordered by gid.

        Args:
            start_offset: Zero-based index of the first record
            page_size: Maximum number of records to return

        Returns:
            Tuple of (records, total matching count or None when unknown)
        """
        if start_offset < 0:
            raise ValueError(f"start_offset must be >= 0, got {start_offset}")
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")

        query = sql.SQL(
            "SELECT gid, id_no, sci_name, presence, compiler, citation, "
            "ST_AsGeoJSON(geom) AS geom, count(*) OVER () AS total_count "
            "FROM {} ORDER BY gid LIMIT %s OFFSET %s"
        ).format(sql.Identifier(self.polygon_view))

        rows = self._query(query, (page_size, start_offset))
        total_count = int(rows[0]['total_count']) if rows else None
        records = [PolygonRecord.from_row(row) for row in rows]

        logger.info(f"Fetched {len(records)} polygon records from offset {start_offset} (total: {total_count})")
        return records, total_count

    def subscribe_to_point_changes(self, on_insert: PointHandler, on_update: PointHandler,
                                   on_delete: DeleteHandler) -> PointSubscription:
        """Open a dedicated LISTEN connection and start delivering point changes."""
        conn = None
        try:
            conn = self._connect(self.dsn)
            conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
            with conn.cursor() as cur:
                cur.execute(sql.SQL("LISTEN {}").format(sql.Identifier(self.notify_channel)))
        except psycopg2.Error as e:
            if conn is not None:
                conn.close()
            raise DataError(f"Could not subscribe to point changes: {e}") from e

        subscription = PointSubscription(
            conn, self.notify_channel, on_insert, on_update, on_delete,
            poll_seconds=self.poll_seconds,
        )
        return subscription.start()

    def close(self) -> None:
        """Close the query connection."""
        with self._conn_lock:
            if self._conn is not None and not self._conn.closed:
                self._conn.close()
            self._conn = None
