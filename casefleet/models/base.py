from sqlalchemy import JSON, BigInteger, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Insertion-ordered surrogate key for bounded logs; SQLite only autoincrements INTEGER
SequenceId = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass
