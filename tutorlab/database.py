from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from tutorlab.config import get_settings

settings = get_settings()

# SQLite needs check_same_thread=False: sessions are used from executor threads
connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=False,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
