"""
FastAPI dependencies
Services are built once by create_app and kept on app.state
"""
from fastapi import Request

from manuflix.services.checkout_service import PaymentSessionOrchestrator
from manuflix.services.checkout_session import SessionRegistry
from manuflix.services.plan_catalog import PlanCatalog


def get_orchestrator(request: Request) -> PaymentSessionOrchestrator:
    return request.app.state.orchestrator


def get_catalog(request: Request) -> PlanCatalog:
    return request.app.state.catalog


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry
