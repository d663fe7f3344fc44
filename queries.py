from typing import Dict, Iterable, List, Optional

from sqlmodel import Session, col, select

from clock import SystemClock
from database import Database
from errors import NotFound
from models import Auction, AuctionStatus, CartEntry, Comment, User
from repository import AuctionRepository, BidLedger

BROWSE_STATUSES = (AuctionStatus.ACTIVE, AuctionStatus.IN_PROGRESS, AuctionStatus.COMPLETED)


def user_card(user: Optional[User]) -> Optional[dict]:
    if user is None:
        return None
    return {'id': user.id, 'username': user.username, 'name': user.name,
            'profile_image': user.profile_image}


def users_by_id(session: Session, ids: Iterable[Optional[int]]) -> Dict[int, User]:
    wanted = {i for i in ids if i is not None}
    if not wanted:
        return {}
    users = session.exec(select(User).where(col(User.id).in_(sorted(wanted))))
    return {user.id: user for user in users}


class AuctionQueryService:
    """Read side for the presentation layer. Never changes anything."""

    def __init__(self, database: Database, clock=None):
        self.database = database
        self.clock = clock or SystemClock()

    def browse(self, open_only: bool = False) -> List[dict]:
        open_at = self.clock.now() if open_only else None
        with self.database.session() as session:
            auctions = AuctionRepository(session).find_by_status_and_window(
                BROWSE_STATUSES, open_at=open_at)
            return self._with_people(session, auctions)

    def past_auctions(self) -> List[dict]:
        with self.database.session() as session:
            auctions = AuctionRepository(session).find_by_status_and_window(
                [AuctionStatus.COMPLETED])
            auctions.sort(key=lambda a: (a.end_at, a.id), reverse=True)
            return self._with_people(session, auctions)

    def owned_by(self, owner_id: int) -> List[dict]:
        with self.database.session() as session:
            if session.get(User, owner_id) is None:
                raise NotFound(f'User {owner_id} does not exist.')
            auctions = AuctionRepository(session).find_by_owner(owner_id)
            return self._with_people(session, auctions)

    def auction_detail(self, auction_id: int, viewer_id: Optional[int] = None) -> dict:
        with self.database.session() as session:
            auction = AuctionRepository(session).get_by_id(auction_id)
            if auction is None:
                raise NotFound(f'Auction {auction_id} does not exist.')

            bids = BidLedger(session).list_by_auction(auction_id)
            comments = list(session.exec(
                select(Comment)
                .where(Comment.auction_id == auction_id)
                .order_by(col(Comment.created_at), col(Comment.id))))
            people = users_by_id(session, [auction.owner_id, auction.bidder_id]
                                 + [b.bidder_id for b in bids]
                                 + [c.user_id for c in comments])

            cart_entry = None
            if viewer_id is not None:
                cart_entry = session.exec(
                    select(CartEntry)
                    .where(CartEntry.auction_id == auction_id, CartEntry.user_id == viewer_id)
                    .order_by(col(CartEntry.created_at).desc(), col(CartEntry.id).desc())
                ).first()

            detail = self._auction(auction, people)
            detail['bids'] = [
                {**bid.model_dump(mode='json'), 'bidder': user_card(people.get(bid.bidder_id))}
                for bid in bids
            ]
            detail['comments'] = [
                {**comment.model_dump(mode='json'), 'user': user_card(people.get(comment.user_id))}
                for comment in comments
            ]
            detail['cart_entry'] = cart_entry.model_dump(mode='json') if cart_entry else None
            return detail

    def _with_people(self, session: Session, auctions: List[Auction]) -> List[dict]:
        people = users_by_id(session, [a.owner_id for a in auctions]
                             + [a.bidder_id for a in auctions])
        return [self._auction(a, people) for a in auctions]

    @staticmethod
    def _auction(auction: Auction, people: Dict[int, User]) -> dict:
        data = auction.model_dump(mode='json')
        data['owner'] = user_card(people.get(auction.owner_id))
        data['leader'] = None
        if auction.bidder_id is not None:
            data['leader'] = {'amount': auction.bid,
                              'bidder': user_card(people.get(auction.bidder_id))}
        return data
