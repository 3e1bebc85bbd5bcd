"""Rule assignment registry, recipient resolution and assignee selection.

Components:
- RuleAssignment / AssignmentSpec: Snapshot and desired state of an assignment
- Severity / Strategy / Category: Enums with case-insensitive parsing
- AssignmentRepository: asyncpg persistence for assignments and cursors
- AssignmentRegistry: CRUD plus the per-rule round-robin cursor
- DirectoryRepository / RecipientResolver: Team expansion into recipients
- StrategyEngine: MANUAL, ROUND_ROBIN, LOAD_BASED and TEAM_BASED selection
- CaseServiceClient: Hand-off of the chosen assignee
- RoutingConfig: ROUTING_* settings
"""

from src.assignments.config import RoutingConfig
from src.assignments.errors import NotFoundError, ValidationError
from src.assignments.handoff import CaseServiceClient, HandoffResult
from src.assignments.registry import AssignmentRegistry
from src.assignments.repository import AssignmentRepository
from src.assignments.resolver import DirectoryRepository, RecipientResolver, Resolution
from src.assignments.schemas import (
    AssignmentSpec,
    Category,
    RuleAssignment,
    Severity,
    Strategy,
    Team,
    TeamMember,
    User,
)
from src.assignments.strategies import StrategyEngine

__all__ = [
    "AssignmentRegistry",
    "AssignmentRepository",
    "AssignmentSpec",
    "CaseServiceClient",
    "Category",
    "DirectoryRepository",
    "HandoffResult",
    "NotFoundError",
    "RecipientResolver",
    "Resolution",
    "RoutingConfig",
    "RuleAssignment",
    "Severity",
    "Strategy",
    "StrategyEngine",
    "Team",
    "TeamMember",
    "User",
    "ValidationError",
]
