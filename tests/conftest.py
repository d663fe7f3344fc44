import datetime

import pytest

from auth import RequestContext
from clock import ManualClock
from database import Database
from models import Auction, AuctionStatus, User
from repository import BidLedger

NOW = datetime.datetime(2024, 5, 1, 12, 0, 0)


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'auction.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def clock():
    return ManualClock(NOW)


@pytest.fixture
def users(database):
    with database.session() as session:
        people = {name: User(username=name, name=name.title())
                  for name in ('owner', 'alice', 'bob', 'carol')}
        session.add_all(people.values())
        session.commit()
        return {name: user.id for name, user in people.items()}


def as_user(user_id):
    return RequestContext(user_id=user_id)


@pytest.fixture
def make_auction(database, users):
    def make(start=NOW - datetime.timedelta(hours=1), end=NOW + datetime.timedelta(hours=1),
             status=AuctionStatus.ACTIVE, min_bid=100.0, owner=None, title='Sunflowers'):
        with database.session() as session:
            auction = Auction(title=title, description='Oil on canvas',
                              owner_id=owner or users['owner'], min_bid=min_bid,
                              start_at=start, end_at=end, status=status)
            session.add(auction)
            session.commit()
            return auction.id
    return make


def load(database, auction_id) -> Auction:
    with database.session() as session:
        return session.get(Auction, auction_id)


def ledger(database, auction_id):
    with database.session() as session:
        return BidLedger(session).list_by_auction(auction_id)


def force_status(database, auction_id, status):
    with database.session() as session:
        auction = session.get(Auction, auction_id)
        auction.status = status
        session.add(auction)
        session.commit()
