"""
Module: approval_kernel.db.triggers
Responsibility: Loading, installing, and verifying database immutability
    triggers.  This is the database-level complement to the ORM-level
    listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only (pathlib for
    SQL file loading, sqlalchemy for execution).  MUST NOT import from
    models/, services/, domain/, or outer layers.

Invariants enforced (per dialect, one SQL file set each):
    - AuditEvent rows: no UPDATE, no DELETE, ever.
    - ApprovalRequest rows: no DELETE; no UPDATE once consumed; no UPDATE
      once rejected or cancelled; is_consumed may only flip on an approved row.
    - ApprovalDecision rows: no UPDATE, no DELETE.

Failure modes:
    - PostgreSQL RAISE EXCEPTION / SQLite RAISE(ABORT) on any violation
      (surfaces as IntegrityError or OperationalError through SQLAlchemy).
    - FileNotFoundError if SQL files are missing from the sql/ directory.
    - ValueError for dialects without a trigger set.

Audit relevance:
    Even if the ORM layer is bypassed (raw SQL, bulk statements, a
    compromised handler), these triggers keep the audit trail append-only
    and keep a consumed approval from ever becoming consumable again.
"""

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine


# =============================================================================
# SQL File Loading
# =============================================================================

SQL_DIR = Path(__file__).parent / "sql"

TRIGGER_FILES = [
    "01_audit_event.sql",
    "02_approval_request.sql",
    "03_approval_decision.sql",
]

DROP_FILE = "99_drop_all.sql"

ALL_TRIGGER_NAMES = [
    "trg_audit_event_immutability_update",
    "trg_audit_event_immutability_delete",
    "trg_approval_request_update_guard",
    "trg_approval_request_delete",
    "trg_approval_decision_immutability_update",
    "trg_approval_decision_immutability_delete",
]

SUPPORTED_DIALECTS = ("postgresql", "sqlite")


def _dialect_dir(dialect_name: str) -> Path:
    if dialect_name not in SUPPORTED_DIALECTS:
        raise ValueError(f"No immutability triggers for dialect {dialect_name!r}")
    return SQL_DIR / dialect_name


def _load_sql_file(dialect_name: str, filename: str) -> str:
    """
    Load SQL content from the dialect's sql/ subdirectory.

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    return (_dialect_dir(dialect_name) / filename).read_text(encoding="utf-8")


def _load_all_trigger_sql(dialect_name: str) -> str:
    """Load and concatenate all trigger SQL files in numbered order."""
    sql_parts = []
    for filename in TRIGGER_FILES:
        sql_parts.append(f"-- Loading: {filename}")
        sql_parts.append(_load_sql_file(dialect_name, filename))
        sql_parts.append("")
    return "\n".join(sql_parts)


def _execute_script(engine: Engine, sql_content: str) -> None:
    """Run a multi-statement SQL script on the engine's dialect."""
    if engine.dialect.name == "sqlite":
        # pysqlite executes one statement per call; executescript runs them all
        raw = engine.raw_connection()
        try:
            raw.driver_connection.executescript(sql_content)
        finally:
            raw.close()
        return

    with engine.connect() as conn:
        conn.exec_driver_sql(sql_content)
        conn.commit()


# =============================================================================
# Public API
# =============================================================================


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install database-level immutability triggers.

    Preconditions: Tables must exist (call after create_all()).
    Postconditions: All triggers in ALL_TRIGGER_NAMES are installed.
        Installation is idempotent on both dialects.
    """
    _execute_script(engine, _load_all_trigger_sql(engine.dialect.name))


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove database-level immutability triggers.

    WARNING: Only for test cleanup and schema migrations.  Re-install
    immediately afterwards.
    """
    _execute_script(engine, _load_sql_file(engine.dialect.name, DROP_FILE))


def get_installed_triggers(engine: Engine) -> list[str]:
    """Get the sorted list of installed immutability triggers."""
    names = ", ".join(f"'{name}'" for name in ALL_TRIGGER_NAMES)
    if engine.dialect.name == "sqlite":
        check_sql = (
            f"SELECT name FROM sqlite_master "
            f"WHERE type = 'trigger' AND name IN ({names}) ORDER BY name"
        )
    else:
        check_sql = (
            f"SELECT tgname FROM pg_trigger "
            f"WHERE tgname IN ({names}) ORDER BY tgname"
        )

    with engine.connect() as conn:
        return [row[0] for row in conn.execute(text(check_sql))]


def triggers_installed(engine: Engine) -> bool:
    """Check if all immutability triggers are installed."""
    return len(get_installed_triggers(engine)) == len(ALL_TRIGGER_NAMES)


def get_missing_triggers(engine: Engine) -> list[str]:
    """Get the triggers that should be installed but aren't."""
    installed = set(get_installed_triggers(engine))
    return sorted(set(ALL_TRIGGER_NAMES) - installed)
