"""Write lap batches to InfluxDB.

Uses the ``influxdb-client`` 1.x compatibility API, so both InfluxDB 1.8+
(``username:password`` token, database as bucket) and 2.x servers with v1
auth mappings are accepted.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from influxdb_client import InfluxDBClient, Point
from influxdb_client.client.write_api import SYNCHRONOUS

from .errors import SinkError
from .table import MeasurementTable, plain_value

if TYPE_CHECKING:
    from .config import CollectorConfig

log = logging.getLogger(__name__)

# Line protocol integers are signed 64-bit
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def table_to_points(table: MeasurementTable) -> list[Point]:
    """Convert every row of ``table`` into one point.

    String columns become tags, numeric columns become fields.  Integers
    outside the signed 64-bit range are dropped: such a value is an
    unsigned delta that wrapped because the counter went backwards, and
    the server would reject the whole batch for it.  Rows left with no
    field are skipped since a point needs at least one.
    """
    points: list[Point] = []
    for row in table.rows:
        point = Point(table.name)
        has_field = False
        for column, value in zip(table.columns, row):
            value = plain_value(value)
            if isinstance(value, str):
                point.tag(column, value)
            elif isinstance(value, int) and not isinstance(value, bool) and not (
                _INT64_MIN <= value <= _INT64_MAX
            ):
                log.warning(
                    "%s: dropping %s=%d, outside the int64 range",
                    table.name,
                    column,
                    value,
                )
            elif value is not None:
                point.field(column, value)
                has_field = True
        if has_field:
            points.append(point)
    return points


class InfluxSink:
    """Synchronous batch writer to a single InfluxDB database."""

    def __init__(
        self,
        host: str,
        database: str,
        username: str = "root",
        password: str = "root",
    ) -> None:
        url = host if "://" in host else f"http://{host}"
        self._database = database
        self._client = InfluxDBClient(url=url, token=f"{username}:{password}", org="-")
        self._write_api = self._client.write_api(write_options=SYNCHRONOUS)
        log.info("Writing to InfluxDB %s, database %s", url, database)

    @classmethod
    def from_config(cls, config: CollectorConfig) -> InfluxSink:
        return cls(
            host=config.host,
            database=config.database,
            username=config.username,
            password=config.password,
        )

    def write(self, tables: list[MeasurementTable]) -> None:
        """Write one lap's batch.

        Raises:
            SinkError: If the server rejected the batch or was unreachable.
        """
        points = [p for t in tables for p in table_to_points(t)]
        if not points:
            return
        try:
            self._write_api.write(bucket=self._database, record=points)
        except Exception as e:
            raise SinkError(f"InfluxDB write failed: {e}") from e

    def close(self) -> None:
        self._write_api.close()
        self._client.close()

    def __enter__(self) -> InfluxSink:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()
