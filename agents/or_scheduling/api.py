"""
FastAPI application for the OR Scheduling Agent.

Provides REST endpoints for:
- Placement checks, slot finding and (auto) placement of surgeries
- Surgery lifecycle: approval, status transitions, escalation
- The three-tier priority queue and its escalation cycle
- Heuristic predictors (duration, equipment failure, schedule quality)

The caller's identity arrives in the ``X-User-Id`` / ``X-User-Role`` headers
set by the facility gateway; with ``ENFORCE_ROLES=true`` it is checked by the
RoleAuthorizer.
"""

import logging
import threading
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .auth import AllowAllAuthorizer, Authorizer, RoleAuthorizer
from .config import settings
from .constraints import HARD_CONSTRAINTS, SOFT_CONSTRAINTS
from .demo_data import seed_demo_facility
from .duration_predictor import DurationPredictor, PredictionInput
from .equipment_risk import predict_equipment_failure
from .exceptions import (
    AuthorizationError,
    ConstraintViolation,
    EntityNotFoundError,
    NoFeasibleSlotError,
    RepositoryTimeoutError,
    SchedulingError,
    ValidationError,
)
from .models import Actor, Priority, StaffRole, Surgery, SurgeryStatus
from .notifications import FanOutNotificationSink, InMemoryNotificationSink, LoggingNotificationSink
from .orchestrator import SchedulingOrchestrator
from .repository import InMemoryRepository
from .schedule_scorer import ScoredSlot, recommend_sequence, score_schedule

# Configure logging
LOG_FORMATS = {
    "text": '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    "json": '{"time": "%(asctime)s", "logger": "%(name)s", "level": "%(levelname)s", "message": "%(message)s"}',
}


def log_format_for(name: str) -> str:
    """Record format for ``LOG_FORMAT``; unknown names fall back to text."""
    return LOG_FORMATS.get(name.lower(), LOG_FORMATS["text"])


logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format=log_format_for(settings.log_format)
)
logger = logging.getLogger(__name__)


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class PlacementRequest(BaseModel):
    """A concrete placement of one surgery."""
    surgery_id: str
    room_id: str
    start: datetime
    end: datetime


class FindSlotRequest(BaseModel):
    surgery_id: str
    day: Optional[date] = Field(default=None, description="Operating day (default: today)")


class ApprovalRequest(BaseModel):
    approved: bool


class StatusChangeRequest(BaseModel):
    status: SurgeryStatus


class SlotResponse(BaseModel):
    id: str
    room_id: str
    slot_type: str
    start_time: datetime
    end_time: datetime


class SurgeryResponse(BaseModel):
    id: str
    procedure_name: str
    priority: str
    status: str
    approval_status: str
    room_id: Optional[str] = None
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    predicted_duration: Optional[int] = None
    escalated_at: Optional[datetime] = None


class PlacementResponse(BaseModel):
    success: bool
    surgery: SurgeryResponse
    slots: List[SlotResponse]
    score: int
    soft_violations: List[Dict[str, str]]


class FindSlotResponse(BaseModel):
    found: bool
    surgery_id: str
    room_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class DurationPredictionRequest(BaseModel):
    """Request for surgery duration prediction."""
    complexity: int = Field(ge=1, le=5, default=3)
    estimated_duration: int = Field(gt=0, le=1440, description="Base estimate in minutes")
    patient_age: Optional[int] = Field(default=None, ge=0, le=120)
    patient_bmi: Optional[float] = Field(default=None, ge=10, le=80)
    asa_score: Optional[int] = Field(default=None, ge=1, le=6)
    is_emergency: bool = False
    has_comorbidities: bool = False
    hour_of_day: Optional[int] = Field(default=None, ge=0, le=23)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)


class EquipmentFailureRequest(BaseModel):
    usage_count: int = Field(ge=0)
    max_usage: int = Field(ge=0, default=100)
    days_since_service: Optional[float] = Field(default=None, ge=0)
    equipment_type: Optional[str] = None


class ScoredSlotModel(BaseModel):
    start: datetime
    end: datetime
    room_id: Optional[str] = None
    priority: Optional[Priority] = None
    procedure_type: Optional[str] = None
    complexity: Optional[int] = Field(default=None, ge=1, le=5)


class ScoreScheduleRequest(BaseModel):
    slots: List[ScoredSlotModel] = Field(default_factory=list)


class SequenceItem(BaseModel):
    id: str
    priority: Priority = Priority.ELECTIVE
    complexity: int = Field(ge=1, le=5, default=3)
    procedure_type: Optional[str] = None


class RecommendSequenceRequest(BaseModel):
    surgeries: List[SequenceItem]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Dict[str, Any]]


# =============================================================================
# APPLICATION STATE
# =============================================================================

class AppState:
    """
    Application state management.

    Holds the facility repository, the orchestrator bound to the configured
    facility and the notification feed. Built lazily so the app also works
    when the lifespan hook does not run.
    """

    def __init__(self):
        self.repository: Optional[InMemoryRepository] = None
        self.orchestrator: Optional[SchedulingOrchestrator] = None
        self.notifications = InMemoryNotificationSink()
        self.started_at: Optional[datetime] = None
        self._lock = threading.Lock()

    def build_authorizer(self) -> Authorizer:
        return RoleAuthorizer() if settings.enforce_roles else AllowAllAuthorizer()

    def get_orchestrator(self) -> SchedulingOrchestrator:
        with self._lock:
            if self.orchestrator is None:
                self._initialize()
            return self.orchestrator

    def _initialize(self) -> None:
        self.repository = InMemoryRepository()
        if settings.seed_demo_data:
            seed_demo_facility(self.repository, facility_id=settings.default_facility_id)
        self.orchestrator = SchedulingOrchestrator(
            self.repository,
            settings.default_facility_id,
            notifier=FanOutNotificationSink([LoggingNotificationSink(), self.notifications]),
            authorizer=self.build_authorizer(),
        )
        self.started_at = datetime.now()
        logger.info(f"Orchestrator ready for facility '{settings.default_facility_id}'")

    def reset(self) -> None:
        """Drop all state; the next request rebuilds (and reseeds) it."""
        with self._lock:
            if self.orchestrator is not None:
                self.orchestrator.close()
            self.repository = None
            self.orchestrator = None
            self.notifications = InMemoryNotificationSink()


# Global application state
app_state = AppState()
duration_predictor = DurationPredictor()


# =============================================================================
# LIFESPAN MANAGEMENT
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler: build the orchestrator on startup."""
    logger.info(f"Starting {settings.service_name} v{settings.service_version}")
    app_state.get_orchestrator()

    yield

    logger.info("Shutting down OR scheduling agent")
    app_state.reset()


# =============================================================================
# FASTAPI APPLICATION
# =============================================================================

app = FastAPI(
    title="OR Scheduling Agent",
    description="""
    Operating room allocation with explainable, rule-based scheduling.

    ## Features
    - **Constraint Engine**: hard safety rules and soft efficiency preferences
    - **First-fit Allocator**: earliest feasible room and time for a surgery
    - **Priority Queue**: emergency / urgent / elective tiers with aging escalation
    - **Heuristic Predictors**: duration, equipment failure risk, schedule quality

    ## Usage
    1. POST `/schedule/check` to evaluate a placement
    2. POST `/schedule/auto-place` to let the allocator pick a slot
    3. GET `/queue` for the current priority queue
    """,
    version=settings.service_version,
    lifespan=lifespan,
)

# CORS middleware for cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# HELPERS
# =============================================================================

def get_orchestrator() -> SchedulingOrchestrator:
    return app_state.get_orchestrator()


def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Optional[Actor]:
    """Caller identity from gateway headers; None when unauthenticated."""
    if x_user_id is None and x_user_role is None:
        return None
    role = None
    if x_user_role:
        try:
            role = StaffRole(x_user_role.lower())
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": "validation_error", "message": f"Unknown role: {x_user_role}"},
            )
    return Actor(user_id=x_user_id or "anonymous", role=role)


def scheduling_http_error(exc: SchedulingError) -> HTTPException:
    """Translate a scheduling error into the matching HTTP error."""
    if isinstance(exc, EntityNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, AuthorizationError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, RepositoryTimeoutError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        # constraint violations, no feasible slot, concurrent modification
        code = status.HTTP_409_CONFLICT

    detail: Dict[str, Any] = {
        "error": exc.error_code,
        "message": exc.message,
        "retryable": exc.retryable,
    }
    if isinstance(exc, ConstraintViolation):
        detail["violated_rules"] = exc.violated_rules
        if exc.report is not None:
            detail["report"] = exc.report.to_dict()
    if isinstance(exc, NoFeasibleSlotError):
        detail["surgery_id"] = exc.surgery_id

    log = logger.error if code >= 500 else logger.warning
    log(f"{exc.error_code}: {exc.message}")
    return HTTPException(status_code=code, detail=detail)


def _surgery_response(surgery: Surgery) -> SurgeryResponse:
    return SurgeryResponse(
        id=surgery.id,
        procedure_name=surgery.procedure_name,
        priority=surgery.priority.value,
        status=surgery.status.value,
        approval_status=surgery.approval_status.value,
        room_id=surgery.room_id,
        scheduled_start=surgery.scheduled_start,
        scheduled_end=surgery.scheduled_end,
        predicted_duration=surgery.predicted_duration,
        escalated_at=surgery.escalated_at,
    )


def _placement_response(result) -> PlacementResponse:
    return PlacementResponse(
        success=True,
        surgery=_surgery_response(result.surgery),
        slots=[
            SlotResponse(
                id=s.id,
                room_id=s.room_id,
                slot_type=s.slot_type.value,
                start_time=s.start_time,
                end_time=s.end_time,
            )
            for s in result.slots
        ],
        score=result.report.score,
        soft_violations=[v.to_dict() for v in result.soft_violations],
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Operations"])
async def health_check() -> HealthResponse:
    """Health check endpoint for liveness and readiness checks."""
    checks: Dict[str, Dict[str, Any]] = {
        "orchestrator": {
            "status": "ok" if app_state.orchestrator is not None else "not_initialized",
            "facility_id": settings.default_facility_id,
        },
        "authorization": {
            "mode": "roles" if settings.enforce_roles else "allow_all",
        },
    }
    return HealthResponse(
        status="healthy",
        service=settings.service_name,
        version=settings.service_version,
        environment=settings.environment,
        timestamp=datetime.now(),
        checks=checks,
    )


@app.post("/schedule/check", tags=["Scheduling"])
def check_placement(
    request: PlacementRequest,
    orchestrator: SchedulingOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Evaluate a placement against every hard and soft rule without changing
    the schedule. The surgery's own slots are ignored, so this also checks
    a move.
    """
    try:
        report = orchestrator.check_placement(
            request.surgery_id, request.room_id, request.start, request.end
        )
    except SchedulingError as e:
        raise scheduling_http_error(e)
    return report.to_dict()


@app.post("/schedule/find-slot", response_model=FindSlotResponse, tags=["Scheduling"])
def find_slot(
    request: FindSlotRequest,
    orchestrator: SchedulingOrchestrator = Depends(get_orchestrator),
) -> FindSlotResponse:
    """Earliest feasible room and window on the requested day (read-only)."""
    try:
        proposal = orchestrator.find_slot(request.surgery_id, request.day)
    except SchedulingError as e:
        raise scheduling_http_error(e)
    if proposal is None:
        return FindSlotResponse(found=False, surgery_id=request.surgery_id)
    return FindSlotResponse(
        found=True,
        surgery_id=request.surgery_id,
        room_id=proposal.room.id,
        start=proposal.start,
        end=proposal.end,
    )


@app.post("/schedule/place", response_model=PlacementResponse, tags=["Scheduling"])
def place_surgery(
    request: PlacementRequest,
    orchestrator: SchedulingOrchestrator = Depends(get_orchestrator),
    actor: Optional[Actor] = Depends(get_actor),
) -> PlacementResponse:
    """
    Place or move a surgery. Validation and commit are one atomic unit;
    any hard violation returns 409 with the violated rules.
    """
    try:
        result = orchestrator.place(
            request.surgery_id, request.room_id, request.start, request.end, actor=actor
        )
    except SchedulingError as e:
        raise scheduling_http_error(e)
    return _placement_response(result)


@app.post("/schedule/auto-place", response_model=PlacementResponse, tags=["Scheduling"])
def auto_place_surgery(
    request: FindSlotRequest,
    orchestrator: SchedulingOrchestrator = Depends(get_orchestrator),
    actor: Optional[Actor] = Depends(get_actor),
) -> PlacementResponse:
    """Let the first-fit allocator choose the room and time, then place."""
    try:
        result = orchestrator.auto_place(request.surgery_id, request.day, actor=actor)
    except SchedulingError as e:
        raise scheduling_http_error(e)
    return _placement_response(result)


@app.get("/schedule/quality", tags=["Scheduling"])
def schedule_quality(
    day: Optional[date] = Query(default=None),
    orchestrator: SchedulingOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Quality score of the stored schedule for one day."""
    try:
        quality = orchestrator.schedule_quality(day)
    except SchedulingError as e:
        raise scheduling_http_error(e)
    return quality.to_dict()


@app.post("/schedule/score", tags=["Predictions"])
async def score_slots(request: ScoreScheduleRequest) -> Dict[str, Any]:
    """Score an arbitrary (e.g. draft) list of cases."""
    slots = [ScoredSlot(**s.model_dump()) for s in request.slots]
    return score_schedule(slots).to_dict()


@app.post("/schedule/recommend-sequence", tags=["Predictions"])
async def recommend_case_sequence(request: RecommendSequenceRequest) -> Dict[str, Any]:
    """Recommended operating order: priority first, simpler cases first, similar cases batched."""
    surgeries = [
        Surgery(
            id=item.id,
            facility_id=settings.default_facility_id,
            patient_name="",
            procedure_name="",
            priority=item.priority,
            complexity=item.complexity,
            procedure_type=item.procedure_type,
        )
        for item in request.surgeries
    ]
    return {"sequence": recommend_sequence(surgeries), "count": len(surgeries)}


@app.post("/surgeries/{surgery_id}/escalate", response_model=SurgeryResponse, tags=["Surgeries"])
def escalate_surgery(
    surgery_id: str,
    orchestrator: SchedulingOrchestrator = Depends(get_orchestrator),
    actor: Optional[Actor] = Depends(get_actor),
) -> SurgeryResponse:
    """Promote a surgery one priority tier."""
    try:
        surgery = orchestrator.escalate(surgery_id, actor=actor)
    except SchedulingError as e:
        raise scheduling_http_error(e)
    return _surgery_response(surgery)


@app.post("/surgeries/{surgery_id}/approve", response_model=SurgeryResponse, tags=["Surgeries"])
def approve_surgery(
    surgery_id: str,
    request: ApprovalRequest,
    orchestrator: SchedulingOrchestrator = Depends(get_orchestrator),
    actor: Optional[Actor] = Depends(get_actor),
) -> SurgeryResponse:
    """Approve (or reject, which cancels) a pending request."""
    try:
        surgery = orchestrator.approve(surgery_id, request.approved, actor=actor)
    except SchedulingError as e:
        raise scheduling_http_error(e)
    return _surgery_response(surgery)


@app.post("/surgeries/{surgery_id}/status", response_model=SurgeryResponse, tags=["Surgeries"])
def change_surgery_status(
    surgery_id: str,
    request: StatusChangeRequest,
    orchestrator: SchedulingOrchestrator = Depends(get_orchestrator),
    actor: Optional[Actor] = Depends(get_actor),
) -> SurgeryResponse:
    """Lifecycle transition; cancelling or rescheduling frees the room."""
    try:
        surgery = orchestrator.transition(surgery_id, request.status, actor=actor)
    except SchedulingError as e:
        raise scheduling_http_error(e)
    return _surgery_response(surgery)


@app.get("/queue", tags=["Priority Queue"])
def get_priority_queue(
    orchestrator: SchedulingOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Current emergency / urgent / elective tiers with wait times and escalation flags."""
    try:
        snapshot = orchestrator.priority_queue()
    except SchedulingError as e:
        raise scheduling_http_error(e)
    return snapshot.to_dict()


@app.post("/queue/escalation-cycle", tags=["Priority Queue"])
def run_escalation_cycle(
    orchestrator: SchedulingOrchestrator = Depends(get_orchestrator),
    actor: Optional[Actor] = Depends(get_actor),
) -> Dict[str, Any]:
    """Escalate every request that has waited past its tier's threshold."""
    try:
        escalated = orchestrator.run_escalation_cycle(actor=actor)
    except SchedulingError as e:
        raise scheduling_http_error(e)
    return {
        "escalated": [_surgery_response(s).model_dump(mode="json") for s in escalated],
        "count": len(escalated),
    }


@app.post("/predict/duration", tags=["Predictions"])
async def predict_surgery_duration(request: DurationPredictionRequest) -> Dict[str, Any]:
    """Predicted duration with an interval and confidence; the factors show what drove it."""
    result = duration_predictor.predict(PredictionInput(**request.model_dump()))
    return result.to_dict()


@app.post("/predict/equipment-failure", tags=["Predictions"])
async def predict_failure(request: EquipmentFailureRequest) -> Dict[str, Any]:
    """Failure risk band, score, probability and recommended action."""
    result = predict_equipment_failure(
        usage_count=request.usage_count,
        max_usage=request.max_usage,
        days_since_service=request.days_since_service,
        equipment_type=request.equipment_type,
    )
    return result.to_dict()


@app.get("/equipment/risk", tags=["Predictions"])
def equipment_risk(
    orchestrator: SchedulingOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Failure risk of every item in the facility inventory, riskiest first."""
    try:
        risks = orchestrator.equipment_risk()
    except SchedulingError as e:
        raise scheduling_http_error(e)
    return {"equipment": [r.to_dict() for r in risks], "count": len(risks)}


@app.get("/notifications", tags=["Operations"])
async def recent_notifications(limit: int = Query(default=50, ge=1, le=500)) -> Dict[str, Any]:
    """Most recent scheduling notifications, newest last."""
    items = app_state.notifications.recent(limit)
    return {"notifications": [n.to_dict() for n in items], "count": len(items)}


@app.get("/config/constraints", tags=["Configuration"])
async def get_constraints() -> Dict[str, Any]:
    """Hard and soft rules evaluated for every placement."""
    return {
        "hard": [c.to_dict() for c in HARD_CONSTRAINTS],
        "soft": [c.to_dict() for c in SOFT_CONSTRAINTS],
        "penalties": {
            "hard": settings.hard_violation_penalty,
            "soft": settings.soft_violation_penalty,
        },
    }


@app.get("/config/operating-day", tags=["Configuration"])
async def get_operating_day() -> Dict[str, Any]:
    """Operating day window, turnover padding and escalation thresholds."""
    return {
        "day_start_hour": settings.day_start_hour,
        "day_end_hour": settings.day_end_hour,
        "regular_hours_end_hour": settings.regular_hours_end_hour,
        "setup_minutes": settings.setup_minutes,
        "cleanup_minutes": settings.cleanup_minutes,
        "escalation_hours": {
            "elective": settings.elective_escalation_hours,
            "urgent": settings.urgent_escalation_hours,
        },
    }


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "agents.or_scheduling.api:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
