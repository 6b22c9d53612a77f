"""Lazy walk over Aggregate's paginated submission list."""

import logging
from typing import Iterator, Optional

from .cursor import Cursor
from .http import Http
from .jobs import RunnerStatus
from .models import InstanceIdBatch
from .server import AggregateServer

logger = logging.getLogger("aggregate_pull")

DEFAULT_BATCH_SIZE = 100


class InstanceIdBatchGetter:
    """Iterator of InstanceIdBatch, one HTTP round trip per page.

    `has_next()` fetches the next page and keeps it until `next()` hands it
    over. The walk ends on the first page with no ids or on a failed request.
    """

    def __init__(self, server: AggregateServer, http: Http, form_id: str,
                 include_incomplete: bool, cursor: Optional[Cursor] = None,
                 batch_size: int = DEFAULT_BATCH_SIZE, runner_status: Optional[RunnerStatus] = None):
        self.server = server
        self.http = http
        self.form_id = form_id
        self.include_incomplete = include_incomplete
        self.cursor = cursor or Cursor.empty()
        self.batch_size = batch_size
        self.runner_status = runner_status
        self._next_batch: Optional[InstanceIdBatch] = None
        self._finished = False

    def has_next(self) -> bool:
        if self._next_batch is not None:
            return True
        if self._finished:
            return False

        request = self.server.get_instance_id_batch_request(
            self.form_id, self.batch_size, self.cursor, self.include_incomplete
        )
        response = self.http.execute(request, self.runner_status)
        if not response.is_success():
            logger.error(
                f"[{self.form_id}] Error getting submission list: "
                f"{response.status_code} {response.reason}"
            )
            self._finished = True
            return False

        batch: InstanceIdBatch = response.get()
        if batch.count() == 0:
            self._finished = True
            return False

        self._next_batch = batch
        return True

    def next(self) -> InstanceIdBatch:
        if not self.has_next():
            raise StopIteration
        batch, self._next_batch = self._next_batch, None
        self.cursor = batch.cursor
        return batch

    def __iter__(self) -> Iterator[InstanceIdBatch]:
        return self

    def __next__(self) -> InstanceIdBatch:
        return self.next()
