"""Storage layer: SQLAlchemy models, async database handle and repositories."""
