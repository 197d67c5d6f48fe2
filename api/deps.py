from fastapi import Request

from deals.cache import DealCache
from payments.fx import CurrencyConverter
from txn_manager import BookingOrchestrator


def get_orchestrator(request: Request) -> BookingOrchestrator:
    return request.app.state.orchestrator


def get_deal_cache(request: Request) -> DealCache:
    return request.app.state.deal_cache


def get_converter(request: Request) -> CurrencyConverter:
    return request.app.state.converter
