from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from models import Base
import config


def _enable_sqlite_savepoints(engine):
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINT works on pysqlite"""

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(url=None, **kwargs):
    """Создает движок базы данных"""
    url = url or config.DATABASE_URL
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(engine)
    return engine


def get_session(url=None):
    """Создает и возвращает фабрику сессий SQLAlchemy и движок базы данных"""
    engine = create_db_engine(url)
    session_factory = sessionmaker(bind=engine)
    return session_factory, engine


def init_tables(engine):
    """Инициализирует таблицы базы данных"""
    Base.metadata.create_all(engine)
