"""
Integration tests for the command line interface.

Each test works in its own directory with a config file, a schema file,
a migrations directory and a SQLite target.
"""

import json
import logging
from datetime import datetime

import pytest
import sqlalchemy as sa
import yaml

from strata.cli import (
    EXIT_CANCELLED,
    EXIT_FAILURE,
    EXIT_LOCK_HELD,
    EXIT_MIGRATION_FAILED,
    EXIT_NON_CONTIGUOUS,
    EXIT_OK,
    EXIT_USAGE,
    exit_code_for,
    main,
)
from strata.database import TargetDatabase
from strata.errors import PartialApplicationError, SchemaConflictError
from strata.migrations.generator import generate_migration
from strata.migrations.lock import AdvisoryLock
from strata.migrations.store import MigrationStore
from strata.schema.loader import snapshot_to_dict
from tests.fixtures.schemas import employees_v1, employees_v2


pytestmark = pytest.mark.integration


@pytest.fixture(autouse=True)
def quiet_logger():
    """Keep main() from attaching a stderr handler to the package logger."""
    logger = logging.getLogger('strata')
    handler = logging.NullHandler()
    logger.addHandler(handler)
    yield
    logger.removeHandler(handler)


class Project:
    """A throwaway project directory driven through main()."""

    def __init__(self, root):
        self.root = root
        self.config = root / 'strata.yaml'
        self.schema = root / 'schema.yaml'
        self.database = root / 'target.db'
        self.config.write_text(yaml.safe_dump({
            'database_url': 'target.db',
            'migrations_dir': 'migrations',
            'schema_file': 'schema.yaml',
        }))

    def declare(self, snapshot):
        self.schema.write_text(yaml.safe_dump(snapshot_to_dict(snapshot)))

    def run(self, *args):
        return main(['-c', str(self.config), *args])

    @property
    def store(self):
        return MigrationStore(self.root / 'migrations')

    def target(self):
        return TargetDatabase(self.database)


@pytest.fixture
def project(tmp_path):
    return Project(tmp_path)


def status(project, capsys):
    capsys.readouterr()
    assert project.run('status', '--json') == EXIT_OK
    return json.loads(capsys.readouterr().out)


class TestWorkflow:
    """Generate, apply, inspect and revert through the CLI."""

    def test_full_cycle(self, project, capsys):
        project.declare(employees_v1())
        assert project.run('generate', 'create employees') == EXIT_OK
        assert 'Created' in capsys.readouterr().out

        assert project.run('apply') == EXIT_OK
        m1 = project.store.ids()[0]
        assert f"Applied {m1}" in capsys.readouterr().out

        project.declare(employees_v2())
        assert project.run('generate', 'rename name') == EXIT_OK
        out = capsys.readouterr().out
        assert 'rename column Employees.Name to EmpName' in out

        state = status(project, capsys)
        assert state['applied'] == [m1]
        assert len(state['pending']) == 1

        assert project.run('apply') == EXIT_OK
        state = status(project, capsys)
        assert state['pending'] == []
        assert state['current'] == project.store.ids()[-1]

        assert project.run('revert', '--to', '0') == EXIT_OK
        assert status(project, capsys)['applied'] == []

    def test_text_status(self, project, capsys):
        project.declare(employees_v1())
        project.run('generate', 'create employees')
        capsys.readouterr()
        assert project.run('status') == EXIT_OK
        out = capsys.readouterr().out
        assert 'Applied (0):' in out
        assert 'Pending (1):' in out

    def test_apply_nothing(self, project, capsys):
        assert project.run('apply') == EXIT_OK
        assert 'Nothing to do' in capsys.readouterr().out

    def test_dry_run(self, project, capsys):
        project.declare(employees_v1())
        project.run('generate', 'create employees')
        assert project.run('apply', '--dry-run') == EXIT_OK
        assert '(dry run)' in capsys.readouterr().out
        assert status(project, capsys)['applied'] == []

    def test_validate(self, project, capsys):
        project.declare(employees_v1())
        project.run('generate', 'create employees')
        capsys.readouterr()
        assert project.run('validate') == EXIT_OK
        assert 'No errors found' in capsys.readouterr().out

    def test_remove_last(self, project, capsys):
        project.declare(employees_v1())
        project.run('generate', 'create employees')
        project.run('apply')

        assert project.run('remove-last') == EXIT_FAILURE
        assert 'MIGRATION_IS_APPLIED' in capsys.readouterr().err

        project.run('revert', '--to', '0')
        assert project.run('remove-last') == EXIT_OK
        assert 'Removed' in capsys.readouterr().out
        assert len(project.store) == 0

    def test_unlock(self, project, capsys):
        with project.target() as target:
            token = AdvisoryLock().acquire(target)
        assert project.run('unlock') == EXIT_OK
        assert f"Released lock held by {token}" in capsys.readouterr().out
        assert project.run('unlock') == EXIT_OK
        assert 'Lock is not held' in capsys.readouterr().out


class TestExitCodes:
    """Test the exit code contract."""

    def test_unknown_command(self, project):
        assert project.run('bogus') == EXIT_USAGE

    def test_revert_requires_target(self, project):
        assert project.run('revert') == EXIT_USAGE

    def test_missing_config(self, tmp_path):
        assert main(['-c', str(tmp_path / 'missing.yaml'), 'status']) == EXIT_USAGE

    def test_missing_schema_file(self, project, capsys):
        assert project.run('generate', 'create') == EXIT_USAGE
        assert 'Schema file not found' in capsys.readouterr().err

    def test_unusable_label(self, project):
        project.declare(employees_v1())
        assert project.run('generate', '!!!') == EXIT_USAGE
        assert len(project.store) == 0

    def test_empty_diff(self, project, capsys):
        project.declare(employees_v1())
        project.run('generate', 'create employees')
        assert project.run('generate', 'again') == EXIT_FAILURE
        assert 'EMPTY_DIFF' in capsys.readouterr().err

    def test_lock_held(self, project):
        project.declare(employees_v1())
        project.run('generate', 'create employees')
        with project.target() as target:
            AdvisoryLock().acquire(target)
        assert project.run('apply') == EXIT_LOCK_HELD

    def test_non_contiguous(self, project, capsys):
        store = project.store
        m1 = generate_migration(store, employees_v1(), 'create', now=datetime(2025, 1, 1, 9, 0))
        m2 = generate_migration(store, employees_v2(), 'rename', now=datetime(2025, 1, 1, 9, 5))
        generate_migration(store, employees_v1(), 'rename back', now=datetime(2025, 1, 1, 9, 10))
        assert project.run('apply', '--to', m1.id) == EXIT_OK

        (store.directory / f"{m2.id}.yaml").unlink()
        assert project.run('apply') == EXIT_NON_CONTIGUOUS
        assert 'NON_CONTIGUOUS_HISTORY' in capsys.readouterr().err

    def test_timeout(self, project):
        project.declare(employees_v1())
        project.run('generate', 'create employees')
        assert project.run('apply', '--timeout', '0') == EXIT_CANCELLED

    def test_migration_failed(self, project, capsys):
        project.declare(employees_v1())
        project.run('generate', 'create employees')
        with project.target() as target, target.begin() as conn:
            conn.execute(sa.text('CREATE TABLE "Employees" ("Id" INTEGER PRIMARY KEY)'))
        assert project.run('apply') == EXIT_MIGRATION_FAILED
        assert 'MIGRATION_FAILED' in capsys.readouterr().err

    def test_partial_application_code(self):
        error = PartialApplicationError('20250101090000_a', SchemaConflictError('boom'), 2)
        assert exit_code_for(error) == 6
