import json
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.cors import CORSMiddleware
from starlette.status import HTTP_200_OK, HTTP_201_CREATED
from starlette.websockets import WebSocket, WebSocketDisconnect

import config
from auth import RequestContext, bearer_token, resolve_context
from bidding import BidResult, BidService
from clock import SystemClock
from database import Database
from errors import AuctionError, ValidationFailed
from extras import CartService, CommentService, ProfileService
from lifecycle import LifecycleEngine, LifecycleScheduler
from listing import ListingService
from queries import AuctionQueryService
from schemas import BidRequest, CommentRequest, ListingInput, ProfileInput

logger = logging.getLogger(__name__)


class Services:
    def __init__(self, database: Database, clock):
        self.database = database
        self.lifecycle = LifecycleEngine(database, clock)
        self.bids = BidService(database, clock)
        self.listings = ListingService(database)
        self.queries = AuctionQueryService(database, clock)
        self.comments = CommentService(database, clock)
        self.cart = CartService(database, clock)
        self.profiles = ProfileService(database)

    def context_for(self, token: Optional[str]) -> RequestContext:
        with self.database.session() as session:
            return resolve_context(session, token)


class AuctionConnectionManager:
    def __init__(self):
        self.auction_connections: Dict[int, List[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, auction_id: int, detail: dict):
        await websocket.accept()
        if detail['status'] in ('completed', 'expired', 'deleted'):
            await self.send_personal_message('The auction is already finished!', websocket,
                                             json_data={'status': detail['status']})
            leader = detail['leader']
            if leader:
                await self.send_personal_message(
                    f"{detail['title']} was sold for {leader['amount']}"
                    f" to bidder #{leader['bidder']['id']}!", websocket)
            return False

        leader = detail['leader']
        if leader:
            await self.send_personal_message('The auction has already started!',
                                             websocket, cur_price=leader['amount'])
        self.auction_connections.setdefault(auction_id, []).append(websocket)
        return True

    def disconnect(self, websocket: WebSocket, auction_id: int):
        connections = self.auction_connections.get(auction_id, [])
        if websocket in connections:
            connections.remove(websocket)

    async def send_personal_message(self, message: str, websocket: WebSocket,
                                    cur_price=None, json_data=None):
        await websocket.send_text(message)
        if cur_price:
            await websocket.send_json({'new_price': cur_price})
        if json_data:
            await websocket.send_json({'json_data': json_data})

    async def broadcast(self, message: str, auction_id: int, new_price=None, bidder_id=None):
        payload = {}
        if new_price:
            payload = {'new_price': new_price, 'bidder_id': bidder_id}
        for connection in list(self.auction_connections.get(auction_id, [])):
            try:
                await connection.send_text(message)
                if payload:
                    await connection.send_json(payload)
            except (WebSocketDisconnect, RuntimeError):
                logger.debug('Dropping dead socket on auction %s', auction_id)
                self.disconnect(connection, auction_id)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_context(authorization: Optional[str] = Header(None),
                services: Services = Depends(get_services)) -> RequestContext:
    return services.context_for(bearer_token(authorization))


def create_app(database: Optional[Database] = None, clock=None,
               run_scheduler: bool = True,
               tick_seconds: float = config.LIFECYCLE_TICK_SECONDS) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = app.state.services
        services.database.create_all()
        scheduler = None
        if run_scheduler:
            scheduler = LifecycleScheduler(services.lifecycle, tick_seconds)
            scheduler.start()
            logger.info('Lifecycle scheduler running every %ss', tick_seconds)
        yield
        if scheduler is not None:
            scheduler.stop(timeout=5)

    app = FastAPI(title='Art Auction API', lifespan=lifespan)
    app.state.services = Services(database or Database(), clock or SystemClock())
    app.state.manager = AuctionConnectionManager()

    app.add_middleware(CORSMiddleware,
                       allow_origins=config.CORS_ORIGINS,
                       allow_methods=['*'],
                       allow_headers=['*']
                       )

    @app.exception_handler(AuctionError)
    async def auction_error(request: Request, exc: AuctionError):
        return JSONResponse(status_code=exc.status_code, content=exc.as_dict())

    @app.get('/auctions', status_code=HTTP_200_OK)
    def browse(open_only: bool = False, services: Services = Depends(get_services)):
        return services.queries.browse(open_only=open_only)

    @app.get('/auctions/past', status_code=HTTP_200_OK)
    def past_auctions(services: Services = Depends(get_services)):
        return services.queries.past_auctions()

    @app.post('/auctions', status_code=HTTP_201_CREATED)
    def create_auction(payload: ListingInput,
                       context: RequestContext = Depends(get_context),
                       services: Services = Depends(get_services)):
        auction = services.listings.create(context, payload)
        return services.queries.auction_detail(auction.id, context.user_id)

    @app.get('/users/{user_id}/auctions', status_code=HTTP_200_OK)
    def owned_auctions(user_id: int, services: Services = Depends(get_services)):
        return services.queries.owned_by(user_id)

    @app.get('/auction/{id}', status_code=HTTP_200_OK)
    def auction(id: int, context: RequestContext = Depends(get_context),
                services: Services = Depends(get_services)):
        return {'item': services.queries.auction_detail(id, context.user_id)}

    @app.put('/auction/{id}', status_code=HTTP_200_OK)
    def edit_auction(id: int, payload: ListingInput,
                     context: RequestContext = Depends(get_context),
                     services: Services = Depends(get_services)):
        services.listings.edit(context, id, payload)
        return {'item': services.queries.auction_detail(id, context.user_id)}

    @app.delete('/auction/{id}', status_code=HTTP_200_OK)
    def delete_auction(id: int, context: RequestContext = Depends(get_context),
                       services: Services = Depends(get_services)):
        auction = services.listings.delete(context, id)
        return {'id': auction.id, 'status': auction.status.value}

    @app.post('/auction/{id}/bids', status_code=HTTP_201_CREATED)
    async def place_bid(id: int, payload: BidRequest,
                        context: RequestContext = Depends(get_context),
                        services: Services = Depends(get_services)):
        result = await run_in_threadpool(services.bids.submit_bid, context, id, payload.amount)
        if not result.accepted:
            return JSONResponse(status_code=result.error.status_code, content=result.as_dict())
        await app.state.manager.broadcast(
            f'Participant {result.bid.bidder_id} has bid {result.bid.amount}!',
            auction_id=id, new_price=result.bid.amount, bidder_id=result.bid.bidder_id)
        return result.as_dict()

    @app.get('/auction/{id}/comments', status_code=HTTP_200_OK)
    def comments(id: int, services: Services = Depends(get_services)):
        return services.comments.list_comments(id)

    @app.post('/auction/{id}/comments', status_code=HTTP_201_CREATED)
    def add_comment(id: int, payload: CommentRequest,
                    context: RequestContext = Depends(get_context),
                    services: Services = Depends(get_services)):
        return services.comments.add_comment(context, id, payload.text)

    @app.post('/auction/{id}/cart', status_code=HTTP_201_CREATED)
    def add_to_cart(id: int, context: RequestContext = Depends(get_context),
                    services: Services = Depends(get_services)):
        return services.cart.add_to_cart(context, id)

    @app.get('/cart', status_code=HTTP_200_OK)
    def cart(context: RequestContext = Depends(get_context),
             services: Services = Depends(get_services)):
        return services.cart.cart_for(context)

    @app.get('/users/me', status_code=HTTP_200_OK)
    def profile(context: RequestContext = Depends(get_context),
                services: Services = Depends(get_services)):
        return services.profiles.profile(context)

    @app.put('/users/me', status_code=HTTP_200_OK)
    def update_profile(payload: ProfileInput,
                       context: RequestContext = Depends(get_context),
                       services: Services = Depends(get_services)):
        return services.profiles.update(context, payload)

    @app.websocket('/auction/{id}/ws')
    async def auction_feed(websocket: WebSocket, id: int, token: Optional[str] = None):
        services = websocket.app.state.services
        manager = websocket.app.state.manager
        try:
            detail = await run_in_threadpool(services.queries.auction_detail, id)
        except AuctionError as exc:
            await websocket.close(code=1008, reason=exc.message)
            return
        context = await run_in_threadpool(services.context_for, token)

        if not await manager.connect(websocket, id, detail):
            await websocket.close()
            return
        try:
            while True:
                try:
                    data = json.loads(await websocket.receive_text())
                except ValueError:
                    data = None
                if not isinstance(data, dict):
                    rejected = BidResult(accepted=False, error=ValidationFailed(
                        'Send a JSON object such as {"bid": 150}.'))
                    await websocket.send_json(rejected.as_dict())
                    continue
                result = await run_in_threadpool(services.bids.submit_bid,
                                                 context, id, data.get('bid'))
                if result.accepted:
                    await manager.broadcast(
                        f'Participant {result.bid.bidder_id} has bid {result.bid.amount}!',
                        auction_id=id, new_price=result.bid.amount,
                        bidder_id=result.bid.bidder_id)
                else:
                    await websocket.send_json(result.as_dict())
        except WebSocketDisconnect:
            manager.disconnect(websocket, id)
            await manager.broadcast('Participant has left the auction', auction_id=id)
        finally:
            manager.disconnect(websocket, id)

    return app


logging.basicConfig(level=config.LOG_LEVEL,
                    format='%(asctime)s %(levelname)s %(name)s: %(message)s')

app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host=config.HOST, port=config.PORT)
