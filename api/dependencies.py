"""
FastAPI dependencies：從 app.state 取出共用的元件

元件在 main.create_app() 中建立，整個 process 共用一份
"""
from fastapi import Request

from database import Settings
from core.grid_store import GridStore
from core.live_feed import LiveFeed
from core.placement_arbiter import PlacementArbiter
from services.presence_service import PresenceRegistry


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> GridStore:
    return request.app.state.store


def get_arbiter(request: Request) -> PlacementArbiter:
    return request.app.state.arbiter


def get_live_feed(request: Request) -> LiveFeed:
    return request.app.state.live_feed


def get_presence(request: Request) -> PresenceRegistry:
    return request.app.state.presence
