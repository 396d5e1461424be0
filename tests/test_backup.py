"""Tests for JSON backup export/import."""

import json
import pytest
from datetime import date

from focusgrid.local.actions import complete_task, create_task
from focusgrid.local.backup import BACKUP_VERSION, import_backup_payload, serialize_backup


class TestBackup:
    """Export and re-import of an owner's local data."""

    def test_export_shape(self, local_store, test_user_id):
        create_task(local_store, test_user_id, "Exported")
        backup = serialize_backup(local_store, test_user_id)

        assert backup["version"] == BACKUP_VERSION
        assert backup["user_id"] == test_user_id
        assert [t["title"] for t in backup["tasks"]] == ["Exported"]
        # JSON-ready
        json.dumps(backup)

    def test_import_preserves_ids_and_stamps(self, local_store, make_local_store, test_user_id):
        task = create_task(local_store, test_user_id, "Keep me", scheduled_date=date(2026, 3, 10))
        done = complete_task(local_store, test_user_id, create_task(local_store, test_user_id, "Done").id)
        backup = json.loads(json.dumps(serialize_backup(local_store, test_user_id)))

        fresh = make_local_store()
        counts = import_backup_payload(fresh, test_user_id, backup)

        assert counts["tasks"] == 2
        restored = fresh.get(test_user_id, task.id)
        assert restored.updated_at == local_store.get(test_user_id, task.id).updated_at
        assert restored.scheduled_date == date(2026, 3, 10)
        assert fresh.get(test_user_id, done.id).completed_at == done.completed_at
        assert fresh.outbox.pending_count(test_user_id) == 2

    def test_import_reowns_records(self, make_local_store, test_user_id, other_user_id):
        store = make_local_store()
        payload = {
            "tasks": [{"id": "t1", "title": "Foreign", "user_id": other_user_id}],
            "gym_sessions": [{"id": "g1", "session_name": "Legs"}],
            "thesis_logs": [{"id": "l1", "date": "2026-03-01", "words_written": 250}],
            "legacy_backups": [{"payload": {"fg_tasks": "[]"}}],
        }

        counts = import_backup_payload(store, test_user_id, payload)

        assert counts == {"tasks": 1, "gym_sessions": 1, "thesis_logs": 1, "legacy_backups": 1}
        assert store.get(test_user_id, "t1").title == "Foreign"
        assert store.list_gym_sessions(test_user_id)[0].session_name == "Legs"
        assert store.list_thesis_logs(test_user_id)[0].words_written == 250

    def test_malformed_sections_skipped(self, local_store, test_user_id):
        counts = import_backup_payload(
            local_store,
            test_user_id,
            {"tasks": "not a list", "gym_sessions": [{"id": 5}], "legacy_backups": [{"payload": "x"}]},
        )
        assert counts == {"tasks": 0, "gym_sessions": 0, "thesis_logs": 0, "legacy_backups": 0}

    def test_non_object_payload_rejected(self, local_store, test_user_id):
        with pytest.raises(ValueError):
            import_backup_payload(local_store, test_user_id, ["tasks"])
