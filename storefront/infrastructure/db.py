from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from storefront.core_settings import get_settings
from storefront.domain.models import Base

settings = get_settings()
DATABASE_URL = settings.database_url
# sqlite connections are handed across FastAPI's threadpool workers
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=False, future=True, pool_pre_ping=True, connect_args=connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_engine():
    return engine

def init_models():
    Base.metadata.create_all(engine)
