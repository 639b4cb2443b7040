"""Database package for MongoDB integration."""

from db.mongodb import get_database, close_connection, init_indexes, check_connection
from db.visit_log import MemoryVisitLog, SliceQuery, Subscription, VisitLog
from db.visit_repository import MongoVisitLog

__all__ = [
    "get_database",
    "close_connection",
    "init_indexes",
    "check_connection",
    "VisitLog",
    "MemoryVisitLog",
    "MongoVisitLog",
    "SliceQuery",
    "Subscription",
]
