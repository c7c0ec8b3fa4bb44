from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

from voicepins.models import Collection
from voicepins.settings import Settings


def make_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Pipeline runs on worker threads
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


def init_db(engine: Engine, settings: Settings) -> None:
    """Create tables and make sure the collection generated pins land in exists."""
    SQLModel.metadata.create_all(engine)
    with Session(engine) as s:
        if s.get(Collection, settings.DEFAULT_COLLECTION_ID) is None:
            s.add(Collection(id=settings.DEFAULT_COLLECTION_ID, name="Default"))
            s.commit()
