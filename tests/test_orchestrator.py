"""Tests for PushOrchestrator: the per-fieldmap push loop and manual pushes.

Covers:
- Create, update and idempotent re-update through the orchestrator
- Pull-echo suppression via the pull loop guard
- Policy denial, draft skipping and async queueing
- One fieldmap failing without stopping the others
- manual_push status codes
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.objectsync.push.exceptions import LocalRecordNotFoundError
from src.objectsync.push.local import TableStructureRegistry
from src.objectsync.push.schemas import (
    SyncErrorKind,
    SyncStatus,
    SyncTrigger,
)
from src.objectsync.remote.exceptions import RemoteAPIError
from tests.conftest import make_fieldmap


# ── Create / Update Flow ─────────────────────────────────────────────────────


class TestPushObjectCrud:
    """Tests for push_object_crud() end to end with in-memory collaborators."""

    @pytest.mark.asyncio
    async def test_create_new_record(self, orchestrator, remote, mappings, sync_logger):
        """A new record with a create-enabled fieldmap is created remotely."""
        results = await orchestrator.push_object_crud(
            "post", {"id": 42, "title": "Hi"}, SyncTrigger.CREATE
        )

        assert len(results) == 1
        assert results[0].status == SyncStatus.SUCCESS
        assert remote.calls_for("create") == [("create", "Article__c", {"Name": "Hi"})]
        assert mappings.rows[0].remote_id == "a1"
        assert sync_logger.results == results

    @pytest.mark.asyncio
    async def test_update_mapped_record(self, orchestrator, remote, mappings):
        """A mapped record changed after its last sync is updated remotely."""
        mappings.add(42, "a9", last_sync=datetime(2026, 1, 1, tzinfo=timezone.utc))
        record = {"id": 42, "title": "Hi", "modified_at": "2026-02-01T00:00:00+00:00"}

        results = await orchestrator.push_object_crud("post", record, SyncTrigger.UPDATE)

        assert results[0].status == SyncStatus.SUCCESS
        assert remote.calls_for("update") == [("update", "Article__c", "a9", {"Name": "Hi"})]

    @pytest.mark.asyncio
    async def test_repeated_update_is_idempotent(self, orchestrator, remote, mappings):
        """Replaying the same change after a successful push sends nothing new."""
        mappings.add(42, "a9", last_sync=datetime(2026, 1, 1, tzinfo=timezone.utc))
        record = {"id": 42, "title": "Hi", "modified_at": "2026-02-01T00:00:00+00:00"}

        await orchestrator.push_object_crud("post", record, SyncTrigger.UPDATE)
        results = await orchestrator.push_object_crud("post", record, SyncTrigger.UPDATE)

        assert results[0].kind == SyncErrorKind.STALE_WRITE
        assert len(remote.calls_for("update")) == 1

    @pytest.mark.asyncio
    async def test_delete_mapped_record(self, orchestrator, remote, mappings):
        mappings.add(42, "a9")

        results = await orchestrator.push_object_crud("post", {"id": 42}, SyncTrigger.DELETE)

        assert results[0].status == SyncStatus.SUCCESS
        assert remote.calls_for("delete") == [("delete", "Article__c", "a9")]
        assert mappings.rows == []

    @pytest.mark.asyncio
    async def test_no_fieldmaps_means_no_results(self, orchestrator, remote):
        results = await orchestrator.push_object_crud(
            "page", {"id": 7, "title": "About"}, SyncTrigger.CREATE
        )

        assert results == []
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_unknown_object_type_is_configuration_error(
        self, orchestrator, local_store, remote
    ):
        """An object type without a table structure yields one configuration error."""
        local_store.registry = TableStructureRegistry(allow_default=False)

        results = await orchestrator.push_object_crud(
            "post", {"id": 42, "title": "Hi"}, SyncTrigger.CREATE
        )

        assert len(results) == 1
        assert results[0].kind == SyncErrorKind.CONFIGURATION
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_record_without_id_is_configuration_error(self, orchestrator):
        results = await orchestrator.push_object_crud("post", {"title": "Hi"}, SyncTrigger.CREATE)

        assert results[0].kind == SyncErrorKind.CONFIGURATION
        assert "id" in results[0].message


# ── Loop Prevention ──────────────────────────────────────────────────────────


class TestPullEcho:
    """Tests for dropping local changes caused by an in-flight pull."""

    @pytest.mark.asyncio
    async def test_pull_guard_on_mapped_record(self, orchestrator, remote, mappings, lock_store):
        """A pull guard for the record's remote id suppresses exactly one push."""
        mappings.add(42, "a9", last_sync=datetime(2026, 1, 1, tzinfo=timezone.utc))
        lock_store.data["pulling:a9"] = "1"
        record = {"id": 42, "title": "Hi", "modified_at": "2026-02-01T00:00:00+00:00"}

        results = await orchestrator.push_object_crud("post", record, SyncTrigger.UPDATE)

        assert results == []
        assert remote.calls == []
        assert "pulling:a9" not in lock_store.data

        # The guard was consumed, so the next change goes through
        results = await orchestrator.push_object_crud("post", record, SyncTrigger.UPDATE)
        assert results[0].status == SyncStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_pull_pointer_on_unmapped_record(self, orchestrator, remote, lock_store):
        """A record created by a pull has no mapping yet; the pull pointer identifies it."""
        lock_store.data["pulling_object_id"] = "a9"
        lock_store.data["pulling:a9"] = "1"

        results = await orchestrator.push_object_crud(
            "post", {"id": 42, "title": "Hi"}, SyncTrigger.CREATE
        )

        assert results == []
        assert remote.calls == []
        assert "pulling_object_id" not in lock_store.data

    @pytest.mark.asyncio
    async def test_stale_pointer_without_guard_pushes(self, orchestrator, remote, lock_store):
        """A pointer whose guard has expired no longer suppresses pushes."""
        lock_store.data["pulling_object_id"] = "a9"

        results = await orchestrator.push_object_crud(
            "post", {"id": 42, "title": "Hi"}, SyncTrigger.CREATE
        )

        assert results[0].status == SyncStatus.SUCCESS


# ── Policy / Drafts / Queueing ───────────────────────────────────────────────


class TestFieldmapLoop:
    """Tests for per-fieldmap decisions inside the loop."""

    @pytest.mark.asyncio
    async def test_policy_denial_reported_for_meaningful_operation(
        self, orchestrator, fieldmap_repo, remote
    ):
        """A create on a fieldmap without the create trigger is reported as denied."""
        fieldmap_repo._fieldmaps[0] = make_fieldmap(sync_triggers={SyncTrigger.UPDATE})

        results = await orchestrator.push_object_crud(
            "post", {"id": 42, "title": "Hi"}, SyncTrigger.CREATE
        )

        assert len(results) == 1
        assert results[0].status == SyncStatus.ERROR
        assert results[0].kind == SyncErrorKind.POLICY_DENIED
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_policy_denial_unlogged_when_operation_makes_no_sense(
        self, orchestrator, fieldmap_repo, sync_logger, remote
    ):
        """An update of an unmapped record is returned as denied but not logged."""
        fieldmap_repo._fieldmaps[0] = make_fieldmap(sync_triggers={SyncTrigger.UPDATE})

        results = await orchestrator.push_object_crud(
            "post", {"id": 42, "title": "Hi"}, SyncTrigger.UPDATE
        )

        assert len(results) == 1
        assert results[0].status == SyncStatus.ERROR
        assert results[0].kind == SyncErrorKind.POLICY_DENIED
        assert results[0].title.startswith("Error: Push ")
        assert sync_logger.results == []
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_drafts_skipped(self, orchestrator, remote):
        results = await orchestrator.push_object_crud(
            "post", {"id": 42, "title": "Hi", "status": "draft"}, SyncTrigger.CREATE
        )

        assert results == []
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_drafts_pushed_when_fieldmap_allows(self, orchestrator, fieldmap_repo, remote):
        fieldmap_repo._fieldmaps[0] = make_fieldmap(push_drafts=True)

        results = await orchestrator.push_object_crud(
            "post", {"id": 42, "title": "Hi", "status": "draft"}, SyncTrigger.CREATE
        )

        assert results[0].status == SyncStatus.SUCCESS
        assert len(remote.calls_for("create")) == 1

    @pytest.mark.asyncio
    async def test_async_fieldmap_enqueues_job(
        self, orchestrator, fieldmap_repo, task_queue, remote, mappings
    ):
        """An async fieldmap queues a PushJob instead of calling the remote API."""
        fieldmap_repo._fieldmaps[0] = make_fieldmap(push_async=True)

        results = await orchestrator.push_object_crud(
            "post", {"id": 42, "title": "Hi"}, SyncTrigger.CREATE
        )

        assert results[0].status == SyncStatus.SUCCESS
        assert results[0].title.startswith("Success: Queued Create of local post 42")
        assert task_queue.jobs == [
            (
                "object_sync_for_salesforce_push_record",
                {"object_type": "post", "local_id": 42, "fieldmap_id": 1, "trigger": 1},
                "salesforce_push",
            )
        ]
        assert remote.calls == []
        assert mappings.rows == []

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_stop_other_fieldmaps(
        self, orchestrator, fieldmap_repo, remote, monkeypatch
    ):
        """A bug in one fieldmap's push becomes an error result; later fieldmaps still run."""
        fieldmap_repo.add(make_fieldmap(id=2, remote_object_type="Lead", weight=1))
        original_update = remote.update

        async def broken_update(object_type, remote_id, fields):
            if object_type == "Lead":
                raise RuntimeError("boom")
            return await original_update(object_type, remote_id, fields)

        monkeypatch.setattr(remote, "update", broken_update)
        fieldmap_repo.add(make_fieldmap(id=3, remote_object_type="Article__c", weight=2))

        results = await orchestrator.push_object_crud(
            "post", {"id": 42, "title": "Hi"}, SyncTrigger.CREATE
        )

        assert len(results) == 3
        assert results[0].status == SyncStatus.SUCCESS
        assert results[1].status == SyncStatus.ERROR
        assert results[1].kind is None
        assert "failed unexpectedly" in results[1].title
        assert results[1].message == "boom"
        assert results[2].status == SyncStatus.SUCCESS


# ── Manual Push ──────────────────────────────────────────────────────────────


class TestManualPush:
    """Tests for manual_push() and its coarse status codes."""

    @pytest.mark.asyncio
    async def test_post_returns_201(self, orchestrator, local_store):
        local_store.add("post", {"id": 42, "title": "Hi"})

        outcome = await orchestrator.manual_push("post", 42, "POST")

        assert outcome.code == 201
        assert outcome.results[0].status == SyncStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_delete_returns_204(self, orchestrator, mappings):
        """Deleting a record that no longer exists locally still deletes remotely."""
        mappings.add(42, "a9")

        outcome = await orchestrator.manual_push("post", 42, "delete")

        assert outcome.code == 204

    @pytest.mark.asyncio
    async def test_failure_returns_405(self, orchestrator, local_store, remote):
        local_store.add("post", {"id": 42, "title": "Hi"})
        remote.errors["create"] = RemoteAPIError("create", 400, "bad", error_code="INVALID_FIELD")

        outcome = await orchestrator.manual_push("post", 42, "POST")

        assert outcome.code == 405
        assert outcome.results[0].status == SyncStatus.ERROR

    @pytest.mark.asyncio
    async def test_unknown_method_returns_405(self, orchestrator, remote):
        outcome = await orchestrator.manual_push("post", 42, "PATCH")

        assert outcome.code == 405
        assert outcome.results == []
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_missing_record_raises(self, orchestrator):
        with pytest.raises(LocalRecordNotFoundError):
            await orchestrator.manual_push("post", 42, "PUT")

    @pytest.mark.asyncio
    async def test_manual_push_runs_async_fieldmaps_inline(
        self, orchestrator, fieldmap_repo, local_store, task_queue, remote
    ):
        fieldmap_repo._fieldmaps[0] = make_fieldmap(push_async=True)
        local_store.add("post", {"id": 42, "title": "Hi"})

        outcome = await orchestrator.manual_push("post", 42, "POST")

        assert outcome.code == 201
        assert task_queue.jobs == []
        assert len(remote.calls_for("create")) == 1
