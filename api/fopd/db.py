import logging
from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import text, inspect
from .config import DATABASE_URL

logger = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True, connect_args=_connect_args)

def init_db():
    from . import models  # noqa: F401  registers every table on the metadata
    SQLModel.metadata.create_all(engine)
    _ensure_signature_unique_index()

def get_session():
    with Session(engine) as session:
        yield session

def _ensure_signature_unique_index():
    # tables created before the constraint existed only get it as an index
    inspector = inspect(engine)
    try:
        indexes = inspector.get_indexes("investorsignature")
        constraints = inspector.get_unique_constraints("investorsignature")
    except Exception:
        return
    names = {idx.get("name") for idx in indexes} | {c.get("name") for c in constraints}
    if "uq_investor_signature" in names:
        return
    with engine.begin() as conn:
        duplicates = conn.execute(
            text(
                "SELECT investor_id, template_id, property_id FROM investorsignature "
                "GROUP BY investor_id, template_id, property_id HAVING COUNT(*) > 1"
            )
        ).fetchall()
        if duplicates:
            logger.warning(
                "duplicate investor signatures detected; resolve before enforcing uniqueness: %s",
                ", ".join(f"{row[0]}/{row[1]}/{row[2]}" for row in duplicates),
            )
            return
        conn.execute(
            text(
                "CREATE UNIQUE INDEX IF NOT EXISTS uq_investor_signature "
                "ON investorsignature(investor_id, template_id, property_id)"
            )
        )
