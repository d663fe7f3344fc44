import datetime
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import OperationalError

from auth import RequestContext
from bidding import BidService, parse_amount
from conftest import NOW, as_user, force_status, ledger, load
from errors import (BidTooLow, NotFound, PersistenceFailure, Unauthorized,
                    ValidationFailed, WindowClosed)
from lifecycle import LifecycleEngine
from models import AuctionStatus
from repository import AuctionRepository, BidLedger


@pytest.fixture
def service(database, clock):
    return BidService(database, clock)


@pytest.fixture
def open_auction(make_auction):
    return make_auction(min_bid=100.0, status=AuctionStatus.IN_PROGRESS)


def test_higher_bid_takes_the_lead_and_lower_is_refused(database, service, users, open_auction):
    result = service.submit_bid(as_user(users['alice']), open_auction, 150)
    assert result.accepted
    assert result.bid.amount == 150

    auction = load(database, open_auction)
    assert (auction.bidder_id, auction.bid) == (users['alice'], 150)

    result = service.submit_bid(as_user(users['bob']), open_auction, 120)
    assert not result.accepted
    assert isinstance(result.error, BidTooLow)

    auction = load(database, open_auction)
    assert (auction.bidder_id, auction.bid) == (users['alice'], 150)
    assert [b.amount for b in ledger(database, open_auction)] == [150]


def test_first_bid_must_beat_the_minimum(database, service, users, open_auction):
    result = service.submit_bid(as_user(users['alice']), open_auction, 100)
    assert isinstance(result.error, BidTooLow)
    assert load(database, open_auction).bid is None

    assert service.submit_bid(as_user(users['alice']), open_auction, 100.01).accepted


def test_equal_bid_is_too_low(service, users, open_auction):
    assert service.submit_bid(as_user(users['alice']), open_auction, 200).accepted
    result = service.submit_bid(as_user(users['bob']), open_auction, 200)
    assert isinstance(result.error, BidTooLow)


def test_missing_auction_is_reported_before_missing_session(service):
    result = service.submit_bid(RequestContext.anonymous(), 999, 150)
    assert isinstance(result.error, NotFound)


def test_anonymous_bid_is_refused(database, service, open_auction):
    result = service.submit_bid(RequestContext.anonymous(), open_auction, 150)
    assert isinstance(result.error, Unauthorized)
    assert ledger(database, open_auction) == []


@pytest.mark.parametrize('status', [
    AuctionStatus.ACTIVE,
    AuctionStatus.COMPLETED,
    AuctionStatus.EXPIRED,
    AuctionStatus.DELETED,
])
def test_bids_outside_the_window_are_refused(database, service, users, make_auction, status):
    auction_id = make_auction(status=status)

    result = service.submit_bid(as_user(users['alice']), auction_id, 1000)

    assert isinstance(result.error, WindowClosed)
    assert ledger(database, auction_id) == []
    assert load(database, auction_id).bidder_id is None


@pytest.mark.parametrize('amount', [None, 'lots', float('nan'), float('inf'), 0, -5, True])
def test_malformed_amount(amount):
    with pytest.raises(ValidationFailed):
        parse_amount(amount)


def test_leader_rises_with_every_accepted_bid(database, service, users, open_auction):
    offers = [(users['alice'], 110), (users['bob'], 105), (users['bob'], 130),
              (users['carol'], 130), (users['alice'], 175.5), (users['carol'], 176)]
    previous = None
    accepted = []
    for user_id, amount in offers:
        result = service.submit_bid(as_user(user_id), open_auction, amount)
        current = load(database, open_auction).bid
        if result.accepted:
            accepted.append(amount)
            assert previous is None or current > previous
            assert current == max(accepted)
        else:
            assert current == previous
        previous = current

    assert accepted == [110, 130, 175.5, 176]
    assert [b.amount for b in ledger(database, open_auction)] == accepted
    with database.session() as session:
        assert BidLedger(session).highest_for(open_auction).amount == 176


def test_concurrent_bids_lose_nothing(database, clock, users, open_auction):
    amounts = [101 + i for i in range(12)]
    # every lost race means another bid committed, so this many attempts always settles
    service = BidService(database, clock, max_attempts=len(amounts) + 1)
    bidders = [users['alice'], users['bob'], users['carol']]

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(
            lambda pair: service.submit_bid(as_user(bidders[pair[0] % 3]), open_auction, pair[1]),
            enumerate(amounts)))

    accepted = sorted(r.bid.amount for r in results if r.accepted)
    rejected = [r.error for r in results if not r.accepted]
    assert all(isinstance(e, BidTooLow) for e in rejected)
    assert max(accepted) == amounts[-1]

    rows = ledger(database, open_auction)
    assert sorted(b.amount for b in rows) == accepted
    # in acceptance order the ledger only ever goes up
    assert [b.amount for b in rows] == accepted

    auction = load(database, open_auction)
    assert auction.bid == amounts[-1]


def test_two_simultaneous_top_bids(database, clock, users, open_auction):
    service = BidService(database, clock, max_attempts=5)
    assert service.submit_bid(as_user(users['carol']), open_auction, 150).accepted

    with ThreadPoolExecutor(max_workers=2) as pool:
        low = pool.submit(service.submit_bid, as_user(users['alice']), open_auction, 200)
        high = pool.submit(service.submit_bid, as_user(users['bob']), open_auction, 201)
        low, high = low.result(), high.result()

    assert high.accepted
    auction = load(database, open_auction)
    assert (auction.bid, auction.bidder_id) == (201, users['bob'])
    amounts = [b.amount for b in ledger(database, open_auction)]
    if low.accepted:
        assert amounts == [150, 200, 201]
    else:
        assert isinstance(low.error, BidTooLow)
        assert amounts == [150, 201]


def test_lost_race_is_retried_against_fresh_state(database, service, users, open_auction, monkeypatch):
    original = AuctionRepository.update_leader
    calls = []

    def racing(self, *args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            # somebody else gets in first
            assert BidService(database).submit_bid(as_user(users['carol']), open_auction, 300).accepted
        return original(self, *args, **kwargs)

    monkeypatch.setattr(AuctionRepository, 'update_leader', racing)
    result = service.submit_bid(as_user(users['alice']), open_auction, 250)

    assert isinstance(result.error, BidTooLow)
    auction = load(database, open_auction)
    assert (auction.bid, auction.bidder_id) == (300, users['carol'])
    assert [b.amount for b in ledger(database, open_auction)] == [300]


def test_window_closing_mid_bid_is_reported(database, clock, service, users, open_auction, monkeypatch):
    original = AuctionRepository.update_leader

    def closing(self, *args, **kwargs):
        clock.set(NOW + datetime.timedelta(hours=2))
        LifecycleEngine(database, clock).tick()
        return original(self, *args, **kwargs)

    monkeypatch.setattr(AuctionRepository, 'update_leader', closing)
    result = service.submit_bid(as_user(users['alice']), open_auction, 500)

    assert isinstance(result.error, WindowClosed)
    assert load(database, open_auction).status == AuctionStatus.COMPLETED
    assert ledger(database, open_auction) == []


def test_gives_up_after_too_many_lost_races(database, clock, users, open_auction, monkeypatch):
    monkeypatch.setattr(AuctionRepository, 'update_leader', lambda self, *a, **kw: False)
    result = BidService(database, clock, max_attempts=3).submit_bid(
        as_user(users['alice']), open_auction, 500)

    assert isinstance(result.error, PersistenceFailure)
    assert result.error.retryable
    assert ledger(database, open_auction) == []


def test_storage_failure_leaves_no_partial_write(database, service, users, open_auction, monkeypatch):
    def broken(self, bid):
        raise OperationalError('INSERT INTO bid', {}, Exception('disk full'))

    monkeypatch.setattr(BidLedger, 'append', broken)
    result = service.submit_bid(as_user(users['alice']), open_auction, 500)

    assert isinstance(result.error, PersistenceFailure)
    assert result.as_dict()['retryable'] is True
    auction = load(database, open_auction)
    assert auction.bid is None
    assert auction.bidder_id is None


def test_bid_after_force_close(database, service, users, open_auction):
    assert service.submit_bid(as_user(users['alice']), open_auction, 150).accepted
    force_status(database, open_auction, AuctionStatus.COMPLETED)

    result = service.submit_bid(as_user(users['bob']), open_auction, 1000)

    assert isinstance(result.error, WindowClosed)
    assert load(database, open_auction).bid == 150
