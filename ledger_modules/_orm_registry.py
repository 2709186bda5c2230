"""
Module ORM Registry (``ledger_modules._orm_registry``).

Responsibility
--------------
Ensure the kernel models and every module-level SQLAlchemy ORM model are
imported so that ``Base.metadata`` contains their table definitions before
``create_tables()`` / ``drop_tables()`` run.

Architecture position
---------------------
**Modules layer** -- utility.  Called lazily by
``ledger_kernel.db.engine.create_tables``.
"""


def import_all_orm_models() -> None:
    """Import kernel models, then every ``ledger_modules.*.orm`` module.

    Idempotent -- repeated calls are harmless.
    """
    # Kernel tables first; module tables reference journal_entries
    import ledger_kernel.models  # noqa: F401
    import ledger_modules.ap.orm  # noqa: F401
    import ledger_modules.ar.orm  # noqa: F401
