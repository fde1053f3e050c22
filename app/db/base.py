from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# JSONB на PostgreSQL, обычный JSON на остальных диалектах (sqlite в тестах)
JSONType = JSON().with_variant(JSONB, "postgresql")
