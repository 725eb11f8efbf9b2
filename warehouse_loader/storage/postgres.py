"""PostgreSQL connection to the jobs database"""
import logging
from typing import Any, Dict, Optional

import psycopg2

from warehouse_loader.config import DB_CONFIG

logger = logging.getLogger(__name__)


def get_db_connection(config: Optional[Dict[str, Any]] = None):
    """Get PostgreSQL connection"""
    config = config or DB_CONFIG
    return psycopg2.connect(
        host=config["host"],
        port=config["port"],
        user=config["user"],
        password=config["password"],
        dbname=config["database"]
    )
