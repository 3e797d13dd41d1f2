from contextlib import contextmanager
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from pagetree.core.config import settings

engine = create_engine(settings.DATABASE_URL, echo=False)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

def get_db():
    """Dépendance sessionDB"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session):
    """Une unité de travail: commit si tout passe, rollback sinon (jamais d'écriture partielle)"""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def lock_workspace(db: Session, workspace_id: int) -> None:
    # Verrou consultatif PostgreSQL, relâché au commit/rollback.
    # SQLite sérialise déjà les écritures: rien à faire.
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": workspace_id})
