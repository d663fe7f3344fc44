from sqlalchemy import create_engine
from sqlmodel import SQLModel, Session

import config

import models  # noqa: F401  registers the tables on SQLModel.metadata


class Database:
    def __init__(self, url: str = config.DATABASE_URL):
        connect_args = {}
        if url.startswith('sqlite'):
            connect_args = {'check_same_thread': False,
                            'timeout': config.SQLITE_BUSY_TIMEOUT}
        self.url = url
        self.engine = create_engine(url, connect_args=connect_args)

    def create_all(self):
        SQLModel.metadata.create_all(self.engine)

    def session(self) -> Session:
        return Session(bind=self.engine, expire_on_commit=False)

    def dispose(self):
        self.engine.dispose()
