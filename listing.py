import logging
import math

from auth import RequestContext, current_user_id
from database import Database
from errors import Forbidden, NotFound, Unauthorized, ValidationFailed
from models import Auction, AuctionStatus, OPEN_STATUSES
from repository import AuctionRepository
from schemas import ListingInput

logger = logging.getLogger(__name__)


def validate_listing(listing: ListingInput) -> dict:
    title = (listing.title or '').strip()
    description = (listing.description or '').strip()
    if not title:
        raise ValidationFailed('Title is required.')
    if not description:
        raise ValidationFailed('Description is required.')
    if listing.min_bid is None or not math.isfinite(listing.min_bid) or listing.min_bid <= 0:
        raise ValidationFailed('Min Bid must be greater than zero.')
    if listing.end_at <= listing.start_at:
        raise ValidationFailed('Bidding must end after it starts.')
    return {
        'title': title,
        'description': description,
        'image': listing.image,
        'min_bid': float(listing.min_bid),
        'start_at': listing.start_at,
        'end_at': listing.end_at,
    }


class ListingService:
    """What an owner can do to their own art: list it, edit it, pull it."""

    def __init__(self, database: Database):
        self.database = database

    def create(self, context: RequestContext, listing: ListingInput) -> Auction:
        owner_id = current_user_id(context)
        if owner_id is None:
            raise Unauthorized('You need to be logged in to list art.')
        values = validate_listing(listing)
        with self.database.session() as session:
            auction = AuctionRepository(session).create(
                Auction(owner_id=owner_id, status=AuctionStatus.ACTIVE, **values))
            session.commit()
        logger.info('Auction %s listed by user %s', auction.id, owner_id)
        return auction

    def edit(self, context: RequestContext, auction_id: int, listing: ListingInput) -> Auction:
        with self.database.session() as session:
            auctions = AuctionRepository(session)
            auction = self._owned(auctions, context, auction_id)
            values = validate_listing(listing)

            statuses = OPEN_STATUSES
            if (values['start_at'], values['end_at']) != (auction.start_at, auction.end_at):
                # once bidding opened the schedule is fixed
                statuses = (AuctionStatus.ACTIVE,)
            if not auctions.update_content(auction_id, values, statuses):
                raise ValidationFailed('This auction can no longer be edited.')
            session.commit()
            auction = auctions.get_by_id(auction_id)
        logger.info('Auction %s edited', auction_id)
        return auction

    def delete(self, context: RequestContext, auction_id: int) -> Auction:
        with self.database.session() as session:
            auctions = AuctionRepository(session)
            self._owned(auctions, context, auction_id)
            if not auctions.soft_delete(auction_id):
                raise ValidationFailed('Only active or in-progress auctions can be deleted.')
            session.commit()
            auction = auctions.get_by_id(auction_id)
        logger.info('Auction %s deleted', auction_id)
        return auction

    @staticmethod
    def _owned(auctions: AuctionRepository, context: RequestContext, auction_id: int) -> Auction:
        auction = auctions.get_by_id(auction_id)
        if auction is None:
            raise NotFound(f'Auction {auction_id} does not exist.')
        user_id = current_user_id(context)
        if user_id is None:
            raise Unauthorized('You need to be logged in.')
        if auction.owner_id != user_id:
            raise Forbidden('Only the owner can change this auction.')
        return auction
