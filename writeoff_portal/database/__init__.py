from .db import Database, get_db, use_db
