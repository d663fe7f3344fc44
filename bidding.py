import logging
import math
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

import config
from auth import RequestContext, current_user_id
from clock import SystemClock
from database import Database
from errors import (AuctionError, BidTooLow, NotFound, PersistenceFailure,
                    Unauthorized, ValidationFailed, WindowClosed)
from models import AuctionStatus, Bid
from repository import AuctionRepository, BidLedger

logger = logging.getLogger(__name__)


@dataclass
class BidResult:
    accepted: bool
    bid: Optional[Bid] = None
    error: Optional[AuctionError] = None

    def as_dict(self):
        if self.accepted:
            return {'accepted': True, 'bid': self.bid.model_dump(mode='json')}
        return {'accepted': False, **self.error.as_dict()}


def parse_amount(amount) -> float:
    if amount is None or isinstance(amount, bool):
        raise ValidationFailed('Bid amount is required.')
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValidationFailed(f'Bid amount {amount!r} is not a number.') from None
    if not math.isfinite(value) or value <= 0:
        raise ValidationFailed('Bid amount must be a positive number.')
    return value


class BidService:
    """Accepts bids against the auction's stored leader, never a cached copy.

    The leader fields and the ledger row are written in one transaction. The
    leader write is a compare-and-set on the amount that was validated, so two
    bids racing on the same auction can not both win against the same stale
    leader; the loser re-runs the checks against the fresh row.
    """

    def __init__(self, database: Database, clock=None,
                 max_attempts: int = config.BID_MAX_ATTEMPTS):
        self.database = database
        self.clock = clock or SystemClock()
        self.max_attempts = max_attempts

    def submit_bid(self, context: RequestContext, auction_id: int, amount) -> BidResult:
        try:
            bid = self.place_bid(context, auction_id, amount)
        except AuctionError as error:
            logger.debug('Bid of %r on auction %s rejected: %s',
                         amount, auction_id, error.code)
            return BidResult(accepted=False, error=error)
        return BidResult(accepted=True, bid=bid)

    def place_bid(self, context: RequestContext, auction_id: int, amount) -> Bid:
        for attempt in range(1, self.max_attempts + 1):
            with self.database.session() as session:
                try:
                    bid = self._attempt(session, context, auction_id, amount)
                except SQLAlchemyError as exc:
                    session.rollback()
                    logger.warning('Storage error recording bid on auction %s: %s',
                                   auction_id, exc)
                    raise PersistenceFailure('The bid could not be recorded, please retry.') from exc
            if bid is not None:
                logger.info('Auction %s: bid %s by user %s accepted',
                            auction_id, bid.amount, bid.bidder_id)
                return bid
            logger.debug('Auction %s: leader moved during attempt %s, retrying',
                         auction_id, attempt)
        raise PersistenceFailure('The auction is too busy right now, please retry.')

    def _attempt(self, session: Session, context: RequestContext,
                 auction_id: int, amount) -> Optional[Bid]:
        auctions = AuctionRepository(session)

        auction = auctions.get_by_id(auction_id)
        if auction is None:
            raise NotFound(f'Auction {auction_id} does not exist.')

        bidder_id = current_user_id(context)
        if bidder_id is None:
            raise Unauthorized('You need to be logged in to bid.')

        value = parse_amount(amount)

        if auction.status != AuctionStatus.IN_PROGRESS:
            raise WindowClosed(f'Auction {auction_id} is {auction.status.value}, '
                               'bids are not being accepted.')

        if value <= auction.price_to_beat:
            raise BidTooLow(f'Bid must be higher than {auction.price_to_beat:,.2f}.')

        if not auctions.update_leader(auction.id, auction.bid, value, bidder_id):
            session.rollback()
            return None

        bid = BidLedger(session).append(Bid(auction_id=auction.id, bidder_id=bidder_id,
                                            amount=value, created_at=self.clock.now()))
        session.commit()
        return bid
