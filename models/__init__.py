import logging
import time
import uuid
from decimal import Decimal
from threading import Lock
from typing import Any
from sqlalchemy import JSON, Numeric, create_engine
from sqlalchemy.orm import Session, DeclarativeBase, sessionmaker
from config import DATABASE_POOL_SIZE, DATABASE_URL

class Base(DeclarativeBase):
    type_annotation_map = {
        dict[str, Any]: JSON,
        list[dict[str, Any]]: JSON,
        list[str]: JSON,
        Decimal: Numeric(12, 2),
    }

    def as_dict(self):
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}

    def update_vars(self, update_dict):
        for key, value in update_dict.items():
            setattr(self, key, value)

from .clinic import *
from .catalog import *
from .appointment import *
from .discount import *
from .orders import *
from .payments import *
from .laboratory import *

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(
    DATABASE_URL,
    pool_size=DATABASE_POOL_SIZE,
    max_overflow=2,
    pool_pre_ping=True,
    pool_recycle=300,
    pool_use_lifo=True,
    connect_args=connect_args,
    # echo=True
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Tracks open request sessions, surfaced in the logs when the pool gets tight
active_db_conn = {
    "connections": {},
    "min_time": 1.0,
    "max_time": 0.0
}
lock = Lock()

def get_db():
    connection_id = uuid.uuid4()
    start_time = time.time()
    with lock:
        active_db_conn['connections'][connection_id] = start_time

    logging.debug(f"Starting get_db. Active connections: {len(active_db_conn['connections'])}. Pool: {engine.pool.status()}")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

        duration = time.time() - start_time
        with lock:
            del active_db_conn['connections'][connection_id]
            active_db_conn['max_time'] = max(active_db_conn['max_time'], duration)
            active_db_conn['min_time'] = min(active_db_conn['min_time'], duration)

def get_staff(db: Session, staff_id: int):
    return db.query(StaffAccount).filter(StaffAccount.id == staff_id).first()
