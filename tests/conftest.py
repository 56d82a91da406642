"""
Pytest configuration and shared fixtures for sqlsteward tests.

This module provides script factories, executed script snapshots and mocked
database collaborators shared by all sqlsteward tests.
"""

import hashlib
from contextlib import asynccontextmanager
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from sqlsteward.config import StewardConfig
from sqlsteward.database.connection import ConnectionConfig
from sqlsteward.script.model import ExecutedScript, Script, ScriptIndexes, ScriptKind


def md5(content: str) -> str:
    return hashlib.md5(content.encode("utf-8")).hexdigest()


def make_script(
    file_name: str,
    content: str = "",
    kind: ScriptKind = ScriptKind.INCREMENTAL,
    indexes=(),
    is_patch: bool = False,
    last_modified: Optional[int] = None,
) -> Script:
    """Current script with in-memory content."""
    return Script.from_content(
        file_name,
        content or f"-- {file_name}",
        kind=kind,
        indexes=ScriptIndexes(tuple(indexes)),
        is_patch=is_patch,
        last_modified=last_modified,
    )


def make_executed(
    script: Script,
    content: Optional[str] = None,
    succeeded: bool = True,
    last_modified: Optional[int] = None,
) -> ExecutedScript:
    """
    Snapshot of a script as recorded in the executed scripts table.

    Without content the snapshot has the checksum of the given script, i.e.
    the script did not change since it was executed.
    """
    return ExecutedScript(
        script=Script(
            script.file_name,
            kind=script.kind,
            indexes=script.indexes,
            is_patch=script.is_patch,
            checksum=md5(content) if content is not None else script.checksum,
            last_modified=last_modified,
        ),
        succeeded=succeeded,
    )


# ============================================================================
# Script Fixtures
# ============================================================================

@pytest.fixture
def script_factory():
    """Factory creating current scripts."""
    return make_script


@pytest.fixture
def executed_factory():
    """Factory creating executed script snapshots."""
    return make_executed


@pytest.fixture
def script_dir(tmp_path):
    """Script folder with every kind of script."""
    root = tmp_path / "scripts"
    (root / "01_tables").mkdir(parents=True)
    (root / "02_data").mkdir()
    (root / "repeatable").mkdir()
    (root / "preprocessing").mkdir()
    (root / "postprocessing").mkdir()

    (root / "01_tables" / "001_users.sql").write_text("CREATE TABLE users (id int);")
    (root / "01_tables" / "002_orders.sql").write_text("CREATE TABLE orders (id int);")
    (root / "02_data" / "001_#patch_fix_users.sql").write_text("UPDATE users SET id = id;")
    (root / "repeatable" / "views.sql").write_text("CREATE OR REPLACE VIEW v AS SELECT 1;")
    (root / "preprocessing" / "disable_triggers.sql").write_text("SET session_replication_role = replica;")
    (root / "postprocessing" / "grants.sql").write_text("GRANT SELECT ON users TO reader;")
    (root / "README.md").write_text("not a script")
    return root


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def connection_config() -> ConnectionConfig:
    """Connection configuration for a test database."""
    return ConnectionConfig(
        host="localhost",
        port=5432,
        database="steward_test",
        user="test_user",
        password="test_pass",
    )


@pytest.fixture
def sample_config(connection_config, script_dir) -> StewardConfig:
    """Complete configuration pointing at the test script folder."""
    return StewardConfig(
        database=connection_config,
        scripts={"locations": [str(script_dir)]},
        history={"auto_create": True},
        policy={"from_scratch_enabled": True, "schemas": ["public", "app"]},
    )


@pytest.fixture
def temp_config_file(tmp_path, script_dir) -> str:
    """YAML configuration file with a relative script location."""
    path = tmp_path / "sqlsteward.yaml"
    path.write_text(
        """
database:
  host: localhost
  port: 5432
  database: steward_test
  user: test_user
  password: ${STEWARD_TEST_PASSWORD}

scripts:
  locations:
    - scripts

history:
  table_name: executed_scripts
  auto_create: true

policy:
  allow_out_of_sequence_patches: true
  from_scratch_enabled: true
  schemas:
    - public
    - app
"""
    )
    return str(path)


# ============================================================================
# Mock Database Fixtures
# ============================================================================

@pytest.fixture
def mock_database_connection():
    """Mock asyncpg connection with transaction support."""
    conn = AsyncMock()
    conn.execute = AsyncMock(return_value="OK")
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchval = AsyncMock()

    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=None)
    transaction.__aexit__ = AsyncMock(return_value=False)
    conn.transaction = MagicMock(return_value=transaction)
    return conn


@pytest.fixture
def mock_pool(mock_database_connection):
    """Mock ConnectionPool handing out the mock connection."""
    pool = MagicMock()

    @asynccontextmanager
    async def acquire():
        yield mock_database_connection

    pool.acquire = acquire
    pool.execute = AsyncMock(return_value="OK")
    pool.fetch = AsyncMock(return_value=[])
    pool.fetchval = AsyncMock()
    pool.connection = mock_database_connection
    return pool
