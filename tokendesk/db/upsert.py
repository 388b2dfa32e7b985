from sqlalchemy.dialects import postgresql, sqlite

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

def insert_for(session, model):
    """
    Dialect-specific INSERT that supports ON CONFLICT DO UPDATE.
    PostgreSQL in deployment, SQLite in tests.
    """
    dialect = session.get_bind().dialect.name
    try:
        return _INSERTS[dialect](model)
    except KeyError:
        raise NotImplementedError(f"Upsert not supported for dialect {dialect}")
