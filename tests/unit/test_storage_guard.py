"""
Unit tests for the storage guard
"""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from conftest import FakeSessionFactory
from ingestion.storage_guard import BACKUP_MODELS, StorageGuard
from schemas.storage import StorageStatus, StorageThresholds

MB = 1024 * 1024


def make_repository(sizes):
    repository = MagicMock()
    repository.database_size = AsyncMock(side_effect=list(sizes))
    repository.largest_tables = AsyncMock(return_value=[
        {"table_name": "products", "total_bytes": 40 * MB, "row_estimate": 1200},
    ])
    repository.fetch_rows = AsyncMock(return_value=[])
    repository.delete_all = AsyncMock(return_value=3)
    repository.prune_products = AsyncMock(return_value={"stock": 4, "prices": 4, "variants": 4, "products": 4})
    repository.truncate_descriptions = AsyncMock(return_value=2)
    repository.vacuum = AsyncMock()
    return repository


def make_guard(repository, session_factory=None, **thresholds):
    values = dict(limit_bytes=100 * MB, auto_cleanup=False, backup_before_cleanup=False)
    values.update(thresholds)
    return StorageGuard(
        session_factory or FakeSessionFactory(),
        StorageThresholds(**values),
        repository_factory=lambda session: repository,
    )


class TestClassification:
    """Test size thresholds"""

    @pytest.mark.parametrize("size_mb,expected", [
        (10, StorageStatus.OK),
        (79, StorageStatus.OK),
        (80, StorageStatus.WARNING),
        (94, StorageStatus.WARNING),
        (95, StorageStatus.CRITICAL),
        (120, StorageStatus.CRITICAL),
    ])
    def test_classify(self, size_mb, expected):
        guard = make_guard(make_repository([]))

        assert guard.classify(size_mb * MB) == expected

    @pytest.mark.asyncio
    async def test_storage_info(self):
        guard = make_guard(make_repository([50 * MB]))

        info = await guard.get_storage_info()

        assert info.status == StorageStatus.OK
        assert info.percent_of_limit == 50.0
        assert info.size_mb == 50.0
        assert info.largest_tables[0].table_name == "products"

    @pytest.mark.asyncio
    async def test_probe_failure_is_unknown(self):
        repository = make_repository([])
        repository.database_size = AsyncMock(side_effect=OperationalError("SELECT ...", {}, Exception("down")))
        guard = make_guard(repository)

        result = await guard.check_and_manage()

        assert result.can_proceed is True
        assert result.storage_info.status == StorageStatus.UNKNOWN
        assert result.storage_info.error is not None


class TestCheckAndManage:
    """Test the pre-import gate"""

    @pytest.mark.asyncio
    async def test_ok(self):
        result = await make_guard(make_repository([10 * MB])).check_and_manage()

        assert result.can_proceed is True
        assert result.cleanup_performed is False

    @pytest.mark.asyncio
    async def test_warning_proceeds(self):
        result = await make_guard(make_repository([85 * MB])).check_and_manage()

        assert result.can_proceed is True
        assert result.storage_info.status == StorageStatus.WARNING

    @pytest.mark.asyncio
    async def test_critical_without_auto_cleanup_refuses(self):
        repository = make_repository([97 * MB])

        result = await make_guard(repository).check_and_manage()

        assert result.can_proceed is False
        assert result.cleanup_performed is False
        repository.delete_all.assert_not_awaited()
        repository.prune_products.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_critical_with_successful_cleanup(self):
        # gate probe, cleanup before, cleanup after, re-check
        repository = make_repository([97 * MB, 97 * MB, 60 * MB, 60 * MB])
        session_factory = FakeSessionFactory()

        result = await make_guard(repository, session_factory, auto_cleanup=True).check_and_manage()

        assert result.can_proceed is True
        assert result.cleanup_performed is True
        assert result.storage_info.status == StorageStatus.OK
        assert result.cleanup_result.deleted["images"] == 3
        assert result.cleanup_result.deleted["products"] == 4
        assert result.cleanup_result.descriptions_truncated == 2
        assert result.cleanup_result.size_before_bytes == 97 * MB
        assert result.cleanup_result.size_after_bytes == 60 * MB
        repository.prune_products.assert_awaited_once_with(100)
        repository.vacuum.assert_awaited_once()
        # Deletes ran inside one committed transaction
        assert session_factory.commits == 1

    @pytest.mark.asyncio
    async def test_still_critical_after_cleanup_refuses(self):
        repository = make_repository([97 * MB, 97 * MB, 96 * MB, 96 * MB])

        result = await make_guard(repository, auto_cleanup=True).check_and_manage()

        assert result.can_proceed is False
        assert result.cleanup_performed is True

    @pytest.mark.asyncio
    async def test_vacuum_failure_does_not_abort_cleanup(self):
        repository = make_repository([97 * MB, 40 * MB])
        repository.vacuum = AsyncMock(side_effect=OperationalError("VACUUM", {}, Exception("cannot run")))

        result = await make_guard(repository).cleanup()

        assert result.size_after_bytes == 40 * MB


class TestBackup:
    """Test JSON backups"""

    @pytest.mark.asyncio
    async def test_backup_file_layout(self, tmp_path):
        repository = make_repository([])
        updated = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

        async def fetch_rows(model):
            if model.__tablename__ == "products":
                return [{"id": 1, "code": "P1", "updated_at": updated}]
            return []

        repository.fetch_rows = AsyncMock(side_effect=fetch_rows)
        guard = make_guard(repository, backup_dir=str(tmp_path / "backups"))

        result = await guard.backup()

        with open(result.path, encoding="utf-8") as f:
            payload = json.load(f)

        assert result.path.startswith(str(tmp_path / "backups"))
        assert payload["metadata"]["version"] == "1.0"
        assert payload["metadata"]["tables"] == [model.__tablename__ for model in BACKUP_MODELS]
        assert payload["metadata"]["row_counts"]["products"] == 1
        assert payload["data"]["products"][0]["code"] == "P1"
        assert payload["data"]["products"][0]["updated_at"] == str(updated)
        assert result.tables["products"] == 1

    @pytest.mark.asyncio
    async def test_cleanup_backs_up_first(self, tmp_path):
        repository = make_repository([97 * MB, 50 * MB])
        guard = make_guard(repository, backup_before_cleanup=True, backup_dir=str(tmp_path))

        result = await guard.cleanup()

        assert result.backup is not None
        assert repository.fetch_rows.await_count == len(BACKUP_MODELS)
