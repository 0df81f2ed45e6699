"""Database layer: SQLAlchemy async engine, ORM models and repositories."""
