# extensions.py
import os
from flask_sqlalchemy import SQLAlchemy
from redis import Redis
from dotenv import load_dotenv

db = SQLAlchemy()

load_dotenv()

# Only needed when claims run on more than one worker process (see utils/wallet_locks.py)
REDIS_URL = os.getenv("REDIS_URL")
redis_conn = Redis.from_url(REDIS_URL) if REDIS_URL else None
