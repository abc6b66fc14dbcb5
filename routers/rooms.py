from fastapi import APIRouter, HTTPException, Query, Request, Response
from schemas.rooms import RoomCredentials, RoomStatusResponse, RoomDetailsResponse
from typing import Optional
from relay.errors import PersistenceError
from relay.validation import sanitize_input, validate_room_name
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(tags=["rooms"])


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _checked_name(raw_name: str, request: Request) -> str:
    name = sanitize_input(raw_name)
    if not validate_room_name(name):
        logger.warning(f"Invalid room name attempt from {_client_host(request)}: {name}")
        raise HTTPException(status_code=400, detail="Invalid room name")
    return name


@rooms_router.post("/create-room", response_model=RoomStatusResponse, status_code=201)
async def create_room(credentials: RoomCredentials, request: Request, response: Response):
    # { "name": "team-1", "password": "..." }
    # 201 created, 200 already exists and password matches, 401 wrong password, 400 invalid name
    name = _checked_name(credentials.name, request)
    store = request.app.state.room_store
    tracker = request.app.state.tracker
    logger.info(f"Room creation request from {_client_host(request)}, name: {name}")

    try:
        # Nobody is in the room yet, so it expires unless someone joins
        ttl = None if tracker.count(name) > 0 else request.app.state.empty_room_ttl
        if store.create_room(name, credentials.password, ttl=ttl):
            return RoomStatusResponse(name=name, status="created")

        # A record opened by a socket join has no password yet; the first creator to supply one sets it
        if credentials.password is not None and store.set_password_if_unset(name, credentials.password):
            response.status_code = 200
            return RoomStatusResponse(name=name, status="exists")

        if not store.verify_password(name, credentials.password):
            logger.warning(f"Create room failed: Invalid password for existing room {name} from {_client_host(request)}")
            raise HTTPException(status_code=401, detail="Invalid password")
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Internal server error")

    response.status_code = 200
    return RoomStatusResponse(name=name, status="exists")


@rooms_router.post("/join-room", response_model=RoomStatusResponse)
async def join_room(credentials: RoomCredentials, request: Request):
    # Validates access only; the socket `join` frame is what binds the connection
    name = _checked_name(credentials.name, request)
    store = request.app.state.room_store
    logger.info(f"Join room request for {name} from {_client_host(request)}")

    try:
        if not store.room_exists(name):
            logger.warning(f"Join room failed: Room {name} not found")
            raise HTTPException(status_code=404, detail="Room not found")

        if not store.verify_password(name, credentials.password):
            logger.warning(f"Join room failed: Invalid password for room {name} from {_client_host(request)}")
            raise HTTPException(status_code=401, detail="Invalid password")
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Internal server error")

    return RoomStatusResponse(name=name, status="ok")


@rooms_router.get("/rooms/{name}", response_model=RoomDetailsResponse)
async def get_room_details(
    name: str,
    request: Request,
    password: Optional[str] = Query(None, description="Room password (required if room is password protected)"),
):
    """
    Get room details including the live member count.
    Password is required if the room is password protected.
    """
    name = _checked_name(name, request)
    store = request.app.state.room_store

    try:
        if not store.room_exists(name):
            raise HTTPException(status_code=404, detail="Room not found")
        has_password = store.has_password(name)
        if has_password and not store.verify_password(name, password):
            logger.warning(f"Room details failed: Invalid password for room {name}")
            raise HTTPException(status_code=401, detail="Invalid password")
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Internal server error")

    return RoomDetailsResponse(
        name=name,
        online_users_count=request.app.state.tracker.count(name),
        has_password=has_password,
    )
