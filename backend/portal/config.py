# backend/portal/config.py
import os
from dotenv import load_dotenv

load_dotenv()

ASYNC_DB_URL = os.getenv("ASYNC_DATABASE_URL", "sqlite+aiosqlite:///./portal.db")
AUTO_CREATE_TABLES = os.getenv("AUTO_CREATE_TABLES", "false").lower() == "true"

# Tokens are issued by the external identity provider; we only verify them.
SECRET_KEY = os.getenv("SECRET_KEY")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if o.strip()
]

# Video calls are hosted by an external conferencing service.
VIDEO_PROVIDER_URL = os.getenv("VIDEO_PROVIDER_URL", "https://meet.jit.si").rstrip("/")
ROOM_NAMESPACE = os.getenv("ROOM_NAMESPACE", "sathi")
JOIN_WINDOW_MINUTES = int(os.getenv("JOIN_WINDOW_MINUTES", "15"))

# Empty KAFKA_BOOTSTRAP keeps the realtime bridge in-process.
KAFKA_BOOTSTRAP = os.getenv("KAFKA_BOOTSTRAP", "")
KAFKA_TOPIC_REALTIME = os.getenv("KAFKA_TOPIC_REALTIME", "portal.realtime.messages")
REALTIME_QUEUE_SIZE = int(os.getenv("REALTIME_QUEUE_SIZE", "256"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR")
