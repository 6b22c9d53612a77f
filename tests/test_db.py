from aggregate_pull.db import Database


class TestRecordedInstances:
    def test_unknown_instance(self, db) -> None:
        assert not db.has_recorded_instance("uuid:1", "household")

    def test_put_then_has(self, db) -> None:
        db.put_recorded_instance_directory("uuid:1", "/store/instances/uuid1", "household")

        assert db.has_recorded_instance("uuid:1", "household")

    def test_put_is_idempotent(self, db) -> None:
        db.put_recorded_instance_directory("uuid:1", "/old", "household")
        db.put_recorded_instance_directory("uuid:1", "/new", "household")

        assert db.get_stats()[0][:2] == ("household", 1)

    def test_instances_are_scoped_per_form(self, db) -> None:
        db.put_recorded_instance_directory("uuid:1", "/store/household/uuid1", "household")

        assert not db.has_recorded_instance("uuid:1", "census")

        db.put_recorded_instance_directory("uuid:1", "/store/census/uuid1", "census")
        assert [row[:2] for row in db.get_stats()] == [("census", 1), ("household", 1)]

    def test_survives_reopen(self, tmp_path) -> None:
        path = str(tmp_path / "pull.db")
        first = Database(path)
        first.put_recorded_instance_directory("uuid:1", "/dir", "household")
        first.close()

        assert Database(path).has_recorded_instance("uuid:1", "household")


class TestPreferences:
    def test_put_then_get(self, db) -> None:
        assert db.get("household_last_cursor") is None

        db.put("household_last_cursor", "<cursor/>")
        db.put("household_last_cursor", "<cursor>2</cursor>")

        assert db.get("household_last_cursor") == "<cursor>2</cursor>"
