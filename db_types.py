from datetime import timezone
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.expression import FunctionElement
from sqlalchemy.types import TypeDecorator, DateTime


class UTCDateTime(TypeDecorator):
    """
    Timestamp column that always hands back aware UTC datetimes.

    PostgreSQL keeps the offset (timestamptz). SQLite has no offset support,
    so values go in as naive UTC and come back tagged as UTC. Columns filled
    by the database clock (CURRENT_TIMESTAMP / now()) read back the same way.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class statement_time(FunctionElement):
    """
    Database clock for server-filled timestamps.

    PostgreSQL's now() is frozen at transaction start, which can be before a
    row lock was granted; statement_timestamp() is read when the INSERT runs.
    Other dialects use CURRENT_TIMESTAMP.
    """
    type = DateTime(timezone=True)
    name = 'statement_time'
    inherit_cache = True


@compiles(statement_time)
def _statement_time_default(element, compiler, **kw):
    return 'CURRENT_TIMESTAMP'


@compiles(statement_time, 'postgresql')
def _statement_time_postgresql(element, compiler, **kw):
    return 'statement_timestamp()'
