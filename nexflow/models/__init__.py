from nexflow.models.access import (
    FlowAccess,
    FlowTeamAccess,
    FlowUserExclusion,
    StepTeamAccess,
    StepUserExclusion,
    StepVisibility,
)
from nexflow.models.automation import StepChildCardAutomation
from nexflow.models.card import Card, CardActivity, CardHistory, CardStepValue
from nexflow.models.commission import (
    CardItem,
    CommissionCalculation,
    CommissionDistribution,
    Payment,
    TeamCommission,
)
from nexflow.models.contact import Contact, ContactAutomation
from nexflow.models.flow import Flow, Step, StepField
from nexflow.models.organization import ClientUser, Team, TeamLevel, TeamMember, TeamMemberLevel
from nexflow.models.tag import CardTag, FlowTag

__all__ = [
    "Card",
    "CardActivity",
    "CardHistory",
    "CardItem",
    "CardStepValue",
    "CardTag",
    "ClientUser",
    "CommissionCalculation",
    "CommissionDistribution",
    "Contact",
    "ContactAutomation",
    "Flow",
    "FlowAccess",
    "FlowTag",
    "FlowTeamAccess",
    "FlowUserExclusion",
    "Payment",
    "Step",
    "StepChildCardAutomation",
    "StepField",
    "StepTeamAccess",
    "StepUserExclusion",
    "StepVisibility",
    "Team",
    "TeamCommission",
    "TeamLevel",
    "TeamMember",
    "TeamMemberLevel",
]
