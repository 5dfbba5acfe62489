"""
Database executors: render schema operations against a live connection.

The runner depends only on DatabaseExecutor. AlembicExecutor is the
default implementation; it drives Alembic's Operations API over a
MigrationContext bound to the runner's connection, so every statement
joins the record's transaction.

Table alterations go through batch_alter_table. On SQLite, which has a
limited ALTER TABLE, Alembic recreates the table and copies the rows;
elsewhere batch mode emits plain ALTER statements.
"""

import logging
from abc import ABC, abstractmethod

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError, DisconnectionError, IntegrityError, SQLAlchemyError

from strata.errors import (
    ConnectionLostError,
    ConstraintViolationError,
    ExecutionError,
    SchemaConflictError,
    TypeIncompatibleError,
)
from strata.schema.model import Column, ColumnType, ForeignKey, Table
from strata.schema.operations import (
    AddColumn,
    AddForeignKey,
    AddIndex,
    AlterColumnType,
    CreateTable,
    DropColumn,
    DropForeignKey,
    DropIndex,
    DropTable,
    Operation,
    RenameColumn,
    RenameTable,
)

logger = logging.getLogger(__name__)


class DatabaseExecutor(ABC):
    """
    Executes one schema operation on an open connection.

    Attributes:
        transactional_ddl: Whether DDL statements roll back with the
            surrounding transaction. Without it a failing record may
            leave earlier operations applied.
    """

    transactional_ddl: bool = True

    @abstractmethod
    def execute(self, connection: Connection, operation: Operation) -> None:
        """
        Apply ``operation`` using ``connection``.

        Raises:
            SchemaConflictError: Object already exists or is missing
            TypeIncompatibleError: Existing data does not fit the new type
            ConstraintViolationError: Existing data violates a constraint
            ConnectionLostError: The connection dropped mid-operation
        """


# ============================================================================
# Type and column rendering
# ============================================================================

def sqlalchemy_type(column_type: ColumnType) -> sa.types.TypeEngine:
    """Map a semantic column type to a SQLAlchemy type."""
    kind, size, scale = column_type.kind, column_type.size, column_type.scale
    if kind == 'integer':
        return sa.Integer()
    if kind == 'biginteger':
        return sa.BigInteger()
    if kind == 'smallinteger':
        return sa.SmallInteger()
    if kind == 'text':
        return sa.Text()
    if kind == 'string':
        return sa.String(length=size)
    if kind == 'float':
        return sa.Float()
    if kind == 'decimal':
        return sa.Numeric(precision=size, scale=scale)
    if kind == 'boolean':
        return sa.Boolean()
    if kind == 'date':
        return sa.Date()
    if kind == 'datetime':
        return sa.DateTime()
    if kind == 'time':
        return sa.Time()
    if kind == 'binary':
        return sa.LargeBinary(length=size)
    if kind == 'json':
        return sa.JSON()
    if kind == 'uuid':
        return sa.Uuid()
    raise ValueError(f"No SQLAlchemy type for column type '{column_type}'")


def server_default(column: Column):
    """Render a column default as a server default (None if there is none)."""
    value = column.default
    if value is None:
        return None
    if isinstance(value, bool):
        return sa.text('true' if value else 'false')
    if isinstance(value, (int, float)):
        return sa.text(repr(value))
    return str(value)


def sqlalchemy_column(column: Column) -> sa.Column:
    return sa.Column(
        column.name,
        sqlalchemy_type(column.type),
        nullable=column.nullable,
        server_default=server_default(column),
    )


def _foreign_key_constraint(fk: ForeignKey) -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(
        list(fk.columns),
        [f"{fk.target_table}.{c}" for c in fk.target_columns],
        name=fk.name,
    )


# ============================================================================
# Error translation
# ============================================================================

def translate_error(error: Exception, operation: Operation = None) -> ExecutionError:
    """
    Translate a SQLAlchemy/DBAPI error into the execution error taxonomy.

    Args:
        error: Original exception
        operation: Operation that was running, for context

    Returns:
        ExecutionError subclass with the original attached
    """
    error_msg = str(error).lower()
    details = {'error_type': type(error).__name__}
    if operation is not None:
        details['operation'] = operation.describe()

    if isinstance(error, DisconnectionError) or getattr(error, 'connection_invalidated', False):
        return ConnectionLostError("Database connection lost", original_error=error, details=details)

    if (
        'already exists' in error_msg
        or 'no such' in error_msg
        or 'does not exist' in error_msg
        or 'duplicate column' in error_msg
        or 'unknown column' in error_msg
    ):
        return SchemaConflictError(
            f"Schema conflict: {error_msg.splitlines()[0]}",
            original_error=error,
            details=details,
        )

    if isinstance(error, IntegrityError) or 'constraint' in error_msg or 'not null' in error_msg:
        return ConstraintViolationError(
            f"Constraint violation: {error_msg.splitlines()[0]}",
            original_error=error,
            details=details,
        )

    if (
        isinstance(error, sa.exc.DataError)
        or 'datatype' in error_msg
        or 'cannot be cast' in error_msg
        or 'type mismatch' in error_msg
        or 'invalid input syntax' in error_msg
    ):
        return TypeIncompatibleError(
            f"Incompatible type change: {error_msg.splitlines()[0]}",
            original_error=error,
            details=details,
        )

    return ExecutionError(
        f"Database error: {str(error).splitlines()[0] if str(error) else type(error).__name__}",
        original_error=error,
        details=details,
    )


# ============================================================================
# Alembic executor
# ============================================================================

class AlembicExecutor(DatabaseExecutor):
    """
    Executor built on Alembic's Operations API.

    Example:
        executor = AlembicExecutor.for_target(target)
        with target.begin() as conn:
            executor.execute(conn, AddColumn('Employees', email_column))
    """

    def __init__(self, dialect_name: str, transactional_ddl: bool = None):
        """
        Initialize executor.

        Args:
            dialect_name: SQLAlchemy dialect name ('sqlite', 'postgresql', ...)
            transactional_ddl: Override the dialect's capability flag
        """
        self.dialect_name = dialect_name
        if transactional_ddl is None:
            impl = MigrationContext.configure(dialect_name=dialect_name).impl
            # TargetDatabase emits BEGIN itself on SQLite, so DDL is transactional there
            transactional_ddl = bool(impl.transactional_ddl) or dialect_name == 'sqlite'
        self.transactional_ddl = transactional_ddl
        self.logger = logging.getLogger(__name__)

    @classmethod
    def for_target(cls, target) -> 'AlembicExecutor':
        return cls(target.dialect_name)

    def execute(self, connection: Connection, operation: Operation) -> None:
        ops = Operations(MigrationContext.configure(connection=connection))
        self.logger.debug('Executing: %s', operation.describe())
        try:
            self._dispatch(ops, operation)
        except ExecutionError:
            raise
        except (SQLAlchemyError, DBAPIError) as e:
            raise translate_error(e, operation) from e

    def _dispatch(self, ops: Operations, op: Operation) -> None:
        if isinstance(op, CreateTable):
            self._create_table(ops, op.table)
        elif isinstance(op, DropTable):
            ops.drop_table(op.table.name)
        elif isinstance(op, RenameTable):
            ops.rename_table(op.old_name, op.new_name)
        elif isinstance(op, AddColumn):
            with ops.batch_alter_table(op.table_name) as batch:
                batch.add_column(sqlalchemy_column(op.column))
        elif isinstance(op, DropColumn):
            with ops.batch_alter_table(op.table_name) as batch:
                batch.drop_column(op.column.name)
        elif isinstance(op, RenameColumn):
            with ops.batch_alter_table(op.table_name) as batch:
                batch.alter_column(op.old_name, new_column_name=op.new_name)
        elif isinstance(op, AlterColumnType):
            self._alter_column(ops, op)
        elif isinstance(op, AddIndex):
            ops.create_index(
                op.index.name, op.table_name, list(op.index.columns), unique=op.index.unique
            )
        elif isinstance(op, DropIndex):
            ops.drop_index(op.index.name, table_name=op.table_name)
        elif isinstance(op, AddForeignKey):
            fk = op.foreign_key
            with ops.batch_alter_table(op.table_name) as batch:
                batch.create_foreign_key(
                    fk.name, fk.target_table, list(fk.columns), list(fk.target_columns)
                )
        elif isinstance(op, DropForeignKey):
            with ops.batch_alter_table(op.table_name) as batch:
                batch.drop_constraint(op.foreign_key.name, type_='foreignkey')
        else:
            raise TypeError(f"Not a schema operation: {op!r}")

    def _create_table(self, ops: Operations, table: Table) -> None:
        elements = [sqlalchemy_column(c) for c in table.columns]
        if table.primary_key:
            elements.append(sa.PrimaryKeyConstraint(*table.primary_key))
        elements.extend(_foreign_key_constraint(fk) for fk in table.foreign_keys)
        ops.create_table(table.name, *elements)
        for index in table.indexes:
            ops.create_index(index.name, table.name, list(index.columns), unique=index.unique)

    def _alter_column(self, ops: Operations, op: AlterColumnType) -> None:
        before, after = op.before, op.after
        kwargs = {
            'existing_type': sqlalchemy_type(before.type),
            'existing_nullable': before.nullable,
            'existing_server_default': server_default(before),
        }
        if before.type != after.type:
            kwargs['type_'] = sqlalchemy_type(after.type)
        if before.nullable != after.nullable:
            kwargs['nullable'] = after.nullable
        if before.default != after.default:
            # None drops the server default
            kwargs['server_default'] = server_default(after)
        with ops.batch_alter_table(op.table_name) as batch:
            batch.alter_column(after.name, **kwargs)
