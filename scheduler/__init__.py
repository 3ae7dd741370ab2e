"""
Scheduling engine package.

Exports the regeneration entry point plus the pieces it is built from:
1. Constraint model and availability resolver
2. Team selector, scorer and solver
3. Orchestrator, run reports and the error taxonomy
"""

from .config import AvailabilityPolicy, SchedulerConfig, ScoringWeights
from .errors import (
    ConflictError,
    FatalError,
    RegenerationCancelled,
    SchedulingError,
    ValidationError,
)
from .constraints import Candidate, ConstraintChecker, ConstraintName, ConstraintViolation, parse_relaxed
from .snapshot import SchedulingSnapshot
from .availability import AvailabilityResolver
from .teams import FallbackTier, InvalidTeam, RankedTeam, TeamSelector
from .state import InfeasibilityWarning, SchedulerState
from .scoring import SlotScorer
from .requirements import Requirement, build_requirements
from .engine import AssignmentSolver, SolveResult
from .suggestions import Suggestion, generate_suggestions
from .regeneration import (
    RegenerationMode,
    RegenerationOptions,
    RegenerationOrchestrator,
    RunReport,
    RunState,
    SmartStrategy,
)

__all__ = [
    "AvailabilityPolicy",
    "SchedulerConfig",
    "ScoringWeights",
    "SchedulingError",
    "ValidationError",
    "ConflictError",
    "FatalError",
    "RegenerationCancelled",
    "Candidate",
    "ConstraintChecker",
    "ConstraintName",
    "ConstraintViolation",
    "parse_relaxed",
    "SchedulingSnapshot",
    "AvailabilityResolver",
    "FallbackTier",
    "InvalidTeam",
    "RankedTeam",
    "TeamSelector",
    "InfeasibilityWarning",
    "SchedulerState",
    "SlotScorer",
    "Requirement",
    "build_requirements",
    "AssignmentSolver",
    "SolveResult",
    "Suggestion",
    "generate_suggestions",
    "RegenerationMode",
    "RegenerationOptions",
    "RegenerationOrchestrator",
    "RunReport",
    "RunState",
    "SmartStrategy",
]
