"""Comment threads, the cart and user profiles. Plain CRUD next to the auction core."""
import logging
from typing import List

from sqlmodel import col, select

from auth import RequestContext, current_user_id
from clock import SystemClock
from database import Database
from errors import NotFound, Unauthorized, ValidationFailed
from models import Auction, AuctionStatus, CartEntry, Comment, User
from schemas import ProfileInput

logger = logging.getLogger(__name__)


class CommentService:
    def __init__(self, database: Database, clock=None):
        self.database = database
        self.clock = clock or SystemClock()

    def add_comment(self, context: RequestContext, auction_id: int, text: str) -> Comment:
        user_id = current_user_id(context)
        with self.database.session() as session:
            if session.get(Auction, auction_id) is None:
                raise NotFound(f'Auction {auction_id} does not exist.')
            if user_id is None:
                raise Unauthorized('You need to be logged in to comment.')
            text = (text or '').strip()
            if not text:
                raise ValidationFailed('Comment is required.')
            comment = Comment(auction_id=auction_id, user_id=user_id, text=text,
                              created_at=self.clock.now())
            session.add(comment)
            session.commit()
            session.refresh(comment)
        return comment

    def list_comments(self, auction_id: int) -> List[Comment]:
        with self.database.session() as session:
            if session.get(Auction, auction_id) is None:
                raise NotFound(f'Auction {auction_id} does not exist.')
            return list(session.exec(
                select(Comment)
                .where(Comment.auction_id == auction_id)
                .order_by(col(Comment.created_at), col(Comment.id))))


class CartService:
    def __init__(self, database: Database, clock=None):
        self.database = database
        self.clock = clock or SystemClock()

    def add_to_cart(self, context: RequestContext, auction_id: int) -> CartEntry:
        user_id = current_user_id(context)
        with self.database.session() as session:
            auction = session.get(Auction, auction_id)
            if auction is None:
                raise NotFound(f'Auction {auction_id} does not exist.')
            if user_id is None:
                raise Unauthorized('You need to be logged in.')
            if auction.status != AuctionStatus.COMPLETED or auction.bidder_id != user_id:
                raise ValidationFailed('Only the winner of a completed auction can add it to their cart.')
            entry = CartEntry(auction_id=auction_id, user_id=user_id,
                              created_at=self.clock.now())
            session.add(entry)
            session.commit()
            session.refresh(entry)
        logger.info('Auction %s added to cart of user %s', auction_id, user_id)
        return entry

    def cart_for(self, context: RequestContext) -> List[dict]:
        user_id = current_user_id(context)
        if user_id is None:
            raise Unauthorized('You need to be logged in.')
        with self.database.session() as session:
            rows = session.exec(
                select(CartEntry, Auction)
                .join(Auction, col(Auction.id) == CartEntry.auction_id)
                .where(CartEntry.user_id == user_id)
                .order_by(col(CartEntry.created_at).desc(), col(CartEntry.id).desc()))
            return [{**entry.model_dump(mode='json'), 'auction': auction.model_dump(mode='json')}
                    for entry, auction in rows]


class ProfileService:
    def __init__(self, database: Database):
        self.database = database

    def profile(self, context: RequestContext) -> User:
        with self.database.session() as session:
            return self._current(session, context)

    def update(self, context: RequestContext, profile: ProfileInput) -> User:
        with self.database.session() as session:
            user = self._current(session, context)
            values = {
                'email': (profile.email or '').strip(),
                'about': (profile.about or '').strip(),
                'name': (profile.name or '').strip(),
            }
            for field, label in (('email', 'Email'), ('about', 'About'), ('name', 'Name')):
                if not values[field]:
                    raise ValidationFailed(f'{label} is required.')
            image = (profile.profile_image or '').strip() or user.profile_image
            if not image:
                raise ValidationFailed('Profile Image is required.')

            for field, value in values.items():
                setattr(user, field, value)
            user.profile_image = image
            session.add(user)
            session.commit()
            session.refresh(user)
        logger.info('Profile of user %s updated', user.id)
        return user

    @staticmethod
    def _current(session, context: RequestContext) -> User:
        user_id = current_user_id(context)
        if user_id is None:
            raise Unauthorized('You need to be logged in.')
        user = session.get(User, user_id)
        if user is None:
            raise NotFound(f'User {user_id} does not exist.')
        return user
