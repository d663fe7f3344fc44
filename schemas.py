"""
Request bodies for the auction API.

Responses are plain dicts built by the query layer, so only inputs live here.
"""
import datetime
from typing import Optional

from pydantic import BaseModel, Field


def combine(day: datetime.date, time_of_day: datetime.time) -> datetime.datetime:
    """Date + time of day as naive UTC."""
    moment = datetime.datetime.combine(day, time_of_day)
    if moment.tzinfo is not None:
        moment = moment.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return moment


class ListingInput(BaseModel):
    """A piece of art being put up for auction, as the owner fills it in"""
    title: str = Field(..., description="Title of the art")
    description: str = Field(..., description="What is being sold")
    image: Optional[str] = Field(None, description="Reference to an uploaded image")
    min_bid: float = Field(..., description="Bids must be higher than this")
    start_date: datetime.date = Field(..., description="Day bidding opens")
    start_time: datetime.time = Field(..., description="Time of day bidding opens (UTC)")
    end_date: datetime.date = Field(..., description="Day bidding closes")
    end_time: datetime.time = Field(..., description="Time of day bidding closes (UTC)")

    @property
    def start_at(self) -> datetime.datetime:
        return combine(self.start_date, self.start_time)

    @property
    def end_at(self) -> datetime.datetime:
        return combine(self.end_date, self.end_time)


class BidRequest(BaseModel):
    amount: float = Field(..., description="Offered amount")


class CommentRequest(BaseModel):
    text: str = Field(..., description="Comment body")


class ProfileInput(BaseModel):
    name: Optional[str] = Field(None, description="Display name")
    email: Optional[str] = Field(None, description="Contact email")
    about: Optional[str] = Field(None, description="A few words about the artist or collector")
    profile_image: Optional[str] = Field(None, description="Reference to an uploaded image; keeps the current one when left out")
