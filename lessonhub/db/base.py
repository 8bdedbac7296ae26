from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    # Server-generated timestamps are fetched on flush; async sessions cannot lazy load them.
    __mapper_args__ = {"eager_defaults": True}
