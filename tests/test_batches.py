from datetime import datetime, timezone

from aggregate_pull.batches import InstanceIdBatchGetter
from aggregate_pull.cursor import Cursor


def _getter(http, server, cursor=None) -> InstanceIdBatchGetter:
    return InstanceIdBatchGetter(server, http, "household", False, cursor, batch_size=2)


class TestInstanceIdBatchGetter:
    def test_walks_every_page(self, aggregate, http, server) -> None:
        aggregate.add_page(["uuid:1", "uuid:2"], "2019-03-01T10:00:00Z")
        aggregate.add_page(["uuid:3"], "2019-03-02T10:00:00Z")

        batches = list(_getter(http, server))

        assert [b.instance_ids for b in batches] == [("uuid:1", "uuid:2"), ("uuid:3",)]
        assert batches[1].cursor.last_update == datetime(2019, 3, 2, 10, tzinfo=timezone.utc)
        assert batches[1].cursor.last_returned_value == "uuid:3"

    def test_sends_protocol_params(self, aggregate, http, server) -> None:
        list(_getter(http, server))

        params = aggregate.calls("/view/submissionList")[0]
        assert params == {"formId": "household", "cursor": "", "numEntries": "2", "includeIncomplete": "false"}

    def test_one_round_trip_per_advance(self, aggregate, http, server) -> None:
        aggregate.add_page(["uuid:1"], "2019-03-01T10:00:00Z")
        aggregate.add_page(["uuid:2"], "2019-03-02T10:00:00Z")
        getter = _getter(http, server)

        assert aggregate.calls("/view/submissionList") == []
        assert getter.has_next()
        assert getter.has_next()
        assert len(aggregate.calls("/view/submissionList")) == 1

        getter.next()
        assert getter.has_next()
        assert len(aggregate.calls("/view/submissionList")) == 2

    def test_resumes_from_cursor(self, aggregate, http, server) -> None:
        aggregate.add_page(["uuid:1"], "2019-03-01T10:00:00Z")
        aggregate.add_page(["uuid:2"], "2019-03-02T10:00:00Z")
        first_page_cursor = Cursor.from_xml(aggregate.pages[0][1])

        batches = list(_getter(http, server, first_page_cursor))

        assert [b.instance_ids for b in batches] == [("uuid:2",)]
        assert aggregate.calls("/view/submissionList")[0]["cursor"] == aggregate.pages[0][1]

    def test_stops_on_empty_page(self, aggregate, http, server) -> None:
        getter = _getter(http, server)

        assert not getter.has_next()
        assert not getter.has_next()
        assert len(aggregate.calls("/view/submissionList")) == 1

    def test_stops_on_failure(self, aggregate, http, server) -> None:
        aggregate.add_page(["uuid:1"], "2019-03-01T10:00:00Z")
        aggregate.failing_paths.add("/view/submissionList")

        assert list(_getter(http, server)) == []
