import datetime
import random

from auth import issue_session
from clock import utcnow
from database import Database
from models import Auction, User


def create_user(n):
    return User(username=f'artist{n}', name=f'Artist number {n}',
                email=f'artist{n}@example.com')


def create_auct_item(owner_id):
    r = random.randint(1, 100)
    title = f'Painting number {r}'
    description = f'Description for painting number {r}'
    min_bid = random.randint(5000, 20000)
    start_at = utcnow() + datetime.timedelta(minutes=random.randint(-60, 60))
    end_at = start_at + datetime.timedelta(hours=random.randint(1, 48))
    return Auction(title=title, description=description, owner_id=owner_id,
                   min_bid=min_bid, start_at=start_at, end_at=end_at)


def create_auct_db(database=None):
    database = database or Database()
    database.create_all()
    with database.session() as session:
        users = [create_user(n) for n in range(1, 4)]
        session.add_all(users)
        session.commit()

        items = [create_auct_item(random.choice(users).id) for _ in range(10)]
        session.add_all(items)
        session.commit()

        for user in users:
            print(f'{user.username}: Authorization: Bearer {issue_session(session, user.id)}')


if __name__ == '__main__':
    create_auct_db()
