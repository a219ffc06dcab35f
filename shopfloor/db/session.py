from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shopfloor.settings import AUDIT_DB_URL, DATA_DIR


def _engine_options(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    options: dict = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url:
        # One shared connection, otherwise every checkout sees an empty database.
        options["poolclass"] = StaticPool
    else:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
    return options


engine_audit = create_engine(
    AUDIT_DB_URL,
    future=True,
    **_engine_options(AUDIT_DB_URL),
)

SessionLocalAudit = sessionmaker(
    bind=engine_audit,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)
