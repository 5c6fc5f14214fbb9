"""
Process start-up: settings -> logging -> engine -> listeners.

    from school_services.bootstrap import init_ledger
    from school_kernel.db.engine import session_scope

    settings = init_ledger()              # defaults/ledger.yaml + env
    with session_scope() as session:
        PromotionWorkflow(session, settings=settings).balances.record_payment(cmd)

Call once per process, before the first session is opened.
"""

from school_config import LedgerSettings, load_settings
from school_kernel.db.engine import create_tables, init_engine_from_url
from school_kernel.db.immutability import register_immutability_listeners
from school_kernel.logging_config import configure_logging, get_logger

logger = get_logger("services.bootstrap")


def init_ledger(
    settings: LedgerSettings | None = None,
    create_schema: bool = False,
) -> LedgerSettings:
    """
    Apply settings to the process.

    Args:
        settings: Already-loaded settings; ``load_settings()`` otherwise.
        create_schema: Create missing tables (local SQLite runs).

    Returns:
        The settings that were applied, for handing to services.
    """
    settings = settings or load_settings()
    configure_logging(level=settings.log_level)
    init_engine_from_url(settings.database_url, echo=settings.echo_sql)
    if create_schema:
        create_tables()
    register_immutability_listeners()
    logger.info(
        "ledger_initialized",
        extra={
            "database_url": settings.database_url,
            "echo_sql": settings.echo_sql,
            "log_level": settings.log_level,
            "schema_created": create_schema,
            "carry_forward_policy": settings.carry_forward_policy.value,
        },
    )
    return settings
