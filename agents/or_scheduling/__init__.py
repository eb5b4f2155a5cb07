"""
OR Scheduling Agent

A microservice that allocates operating rooms among competing surgical
requests with explainable, rule-based scheduling.

This agent provides:
- A constraint engine with hard safety rules and soft efficiency preferences
- A first-fit slot allocator over the operating day
- A three-tier priority queue with aging-based escalation
- Fixed-formula predictors for duration, equipment failure risk and
  schedule quality
- REST API for placement, lifecycle changes and the priority queue

Components:
-----------
- config: Environment-based configuration
- models: Enumerations and entity dataclasses
- constraints: ConstraintEngine (placement checks)
- scheduler: SlotAllocator (first-fit slot finding)
- priority_queue: PriorityQueueManager
- duration_predictor / equipment_risk / schedule_scorer: heuristic predictors
- repository: Repository interface and in-memory implementation
- orchestrator: SchedulingOrchestrator (place, auto-place, escalate, ...)
- api: FastAPI application

Usage:
------
    # As API server
    python -m uvicorn agents.or_scheduling.api:app --host 0.0.0.0 --port 8003

    # In-process
    orchestrator = SchedulingOrchestrator(repository, "demo-hospital")
    orchestrator.auto_place("surg-001")

Author: Hospital AI Platform Team
Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Hospital AI Platform Team"

from .config import settings
from .constraints import ConstraintEngine
from .duration_predictor import DurationPredictor
from .orchestrator import SchedulingOrchestrator
from .priority_queue import PriorityQueueManager
from .repository import InMemoryRepository, Repository
from .scheduler import SlotAllocator

__all__ = [
    "settings",
    "ConstraintEngine",
    "DurationPredictor",
    "InMemoryRepository",
    "PriorityQueueManager",
    "Repository",
    "SchedulingOrchestrator",
    "SlotAllocator",
    "__version__",
]
