import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func, update
from sqlmodel import Session, col, select

from models import Auction, AuctionStatus, Bid, OPEN_STATUSES, TERMINAL_STATUSES


class AuctionRepository:
    """Auction rows. Never commits; the caller owns the transaction."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, auction: Auction) -> Auction:
        self.session.add(auction)
        self.session.flush()
        return auction

    def get_by_id(self, auction_id: int) -> Optional[Auction]:
        # always reload, status and leader change underneath us
        return self.session.get(Auction, auction_id, populate_existing=True)

    def find_by_status_and_window(self, statuses: Iterable[AuctionStatus],
                                  open_at: Optional[datetime.datetime] = None) -> List[Auction]:
        query = select(Auction).where(col(Auction.status).in_(list(statuses)))
        if open_at is not None:
            query = query.where(Auction.start_at <= open_at, Auction.end_at > open_at)
        query = query.order_by(Auction.start_at, Auction.id)
        return list(self.session.exec(query.execution_options(populate_existing=True)))

    def find_by_owner(self, owner_id: int) -> List[Auction]:
        query = (select(Auction)
                 .where(Auction.owner_id == owner_id)
                 .order_by(col(Auction.created_at).desc(), col(Auction.id).desc()))
        return list(self.session.exec(query))

    def update_status(self, auction_id: int, new_status: AuctionStatus,
                      expected_status: Optional[AuctionStatus] = None) -> bool:
        """Move an auction to ``new_status``.

        Returns False when nothing changed: the auction is already there, it
        is terminal, or it is no longer in ``expected_status``.
        """
        query = (update(Auction)
                 .where(Auction.id == auction_id,
                        Auction.status != new_status,
                        col(Auction.status).notin_(TERMINAL_STATUSES)))
        if expected_status is not None:
            query = query.where(Auction.status == expected_status)
        result = self.session.exec(
            query.values(status=new_status)
            .execution_options(synchronize_session=False))
        return result.rowcount > 0

    def update_leader(self, auction_id: int, expected_amount: Optional[float],
                      new_amount: float, new_leader_id: int) -> bool:
        """Compare-and-set the leading bid.

        Only applies while the auction is in progress, the stored leading
        amount still equals ``expected_amount`` and ``new_amount`` beats it.
        """
        query = (update(Auction)
                 .where(Auction.id == auction_id,
                        Auction.status == AuctionStatus.IN_PROGRESS,
                        func.coalesce(Auction.bid, Auction.min_bid) < new_amount))
        if expected_amount is None:
            query = query.where(col(Auction.bid).is_(None))
        else:
            query = query.where(Auction.bid == expected_amount)
        result = self.session.exec(
            query.values(bid=new_amount, bidder_id=new_leader_id)
            .execution_options(synchronize_session=False))
        return result.rowcount > 0

    def update_content(self, auction_id: int, values: dict,
                       statuses: Iterable[AuctionStatus] = OPEN_STATUSES) -> bool:
        """Owner edit. Refused once anybody has bid."""
        result = self.session.exec(
            update(Auction)
            .where(Auction.id == auction_id,
                   col(Auction.bidder_id).is_(None),
                   col(Auction.status).in_(list(statuses)))
            .values(**values)
            .execution_options(synchronize_session=False))
        return result.rowcount > 0

    def soft_delete(self, auction_id: int) -> bool:
        result = self.session.exec(
            update(Auction)
            .where(Auction.id == auction_id, col(Auction.status).in_(OPEN_STATUSES))
            .values(status=AuctionStatus.DELETED)
            .execution_options(synchronize_session=False))
        return result.rowcount > 0


class BidLedger:
    """Append-only bid rows."""

    def __init__(self, session: Session):
        self.session = session

    def append(self, bid: Bid) -> Bid:
        self.session.add(bid)
        self.session.flush()
        return bid

    def list_by_auction(self, auction_id: int, ascending: bool = True) -> List[Bid]:
        order = [col(Bid.created_at), col(Bid.id)]
        if not ascending:
            order = [c.desc() for c in order]
        query = select(Bid).where(Bid.auction_id == auction_id).order_by(*order)
        return list(self.session.exec(query))

    def highest_for(self, auction_id: int) -> Optional[Bid]:
        query = (select(Bid)
                 .where(Bid.auction_id == auction_id)
                 .order_by(col(Bid.amount).desc(), col(Bid.id))
                 .limit(1))
        return self.session.exec(query).first()
