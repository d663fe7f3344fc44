import datetime
import enum
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field

from clock import utcnow


class AuctionStatus(str, enum.Enum):
    ACTIVE = 'active'
    IN_PROGRESS = 'in-progress'
    COMPLETED = 'completed'
    EXPIRED = 'expired'
    DELETED = 'deleted'


OPEN_STATUSES = (AuctionStatus.ACTIVE, AuctionStatus.IN_PROGRESS)
TERMINAL_STATUSES = (AuctionStatus.COMPLETED, AuctionStatus.EXPIRED,
                     AuctionStatus.DELETED)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    name: Optional[str] = None
    email: Optional[str] = None
    about: Optional[str] = None
    profile_image: Optional[str] = None


class UserSession(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    token: str = Field(index=True, unique=True)
    user_id: int = Field(foreign_key='user.id')
    created_at: datetime.datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Auction(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: str
    image: Optional[str] = None
    owner_id: int = Field(foreign_key='user.id', index=True)
    min_bid: float
    # leader fields stay None until the first accepted bid
    bid: Optional[float] = None
    bidder_id: Optional[int] = Field(default=None, foreign_key='user.id')
    # naive UTC throughout, stored as plain DATETIME
    start_at: datetime.datetime = Field(sa_type=DateTime)
    end_at: datetime.datetime = Field(sa_type=DateTime)
    status: AuctionStatus = Field(default=AuctionStatus.ACTIVE, index=True)
    created_at: datetime.datetime = Field(default_factory=utcnow, sa_type=DateTime)

    @property
    def price_to_beat(self) -> float:
        return self.bid if self.bid is not None else self.min_bid


class Bid(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    auction_id: int = Field(foreign_key='auction.id', index=True)
    bidder_id: int = Field(foreign_key='user.id')
    amount: float
    created_at: datetime.datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Comment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    auction_id: int = Field(foreign_key='auction.id', index=True)
    user_id: int = Field(foreign_key='user.id')
    text: str
    created_at: datetime.datetime = Field(default_factory=utcnow, sa_type=DateTime)


class CartEntry(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    auction_id: int = Field(foreign_key='auction.id', index=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    created_at: datetime.datetime = Field(default_factory=utcnow, sa_type=DateTime)
