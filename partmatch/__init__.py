"""Part catalog reconciliation between a store inventory and a supplier catalog.

Packages:
    - services: normalization, matchers, pipeline, rule learning, job queue
    - models: pydantic data transfer objects
    - stores: in-memory implementations of the persistence interfaces
    - db: SQLAlchemy ORM models and repositories
    - tasks: arq task functions
"""

__version__ = "0.1.0"
