"""API routes."""

from workforce_engine.api.routes.attendance import router as attendance_router
from workforce_engine.api.routes.audit import router as audit_router
from workforce_engine.api.routes.health import router as health_router
from workforce_engine.api.routes.leave import router as leave_router
from workforce_engine.api.routes.payroll import router as payroll_router
from workforce_engine.api.routes.records import router as records_router

__all__ = [
    "attendance_router",
    "audit_router",
    "health_router",
    "leave_router",
    "payroll_router",
    "records_router",
]
