"""Column types shared by PostgreSQL (production) and SQLite (tests)."""
from sqlalchemy import JSON, BigInteger, Integer
from sqlalchemy.dialects.postgresql import JSONB

JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntegerPK = BigInteger().with_variant(Integer(), "sqlite")
