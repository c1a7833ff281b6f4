from .user import User
from .contacts import Contact, ContactActivity, Purchase
from .workflows import ABTest, ABTestAssignment, EmailTemplate, Workflow, WorkflowRun, WorkflowRunEvent
from .automations import (
    Automation,
    AutomationKeyword,
    AutomationListener,
    AutomationPost,
    AutomationTrigger,
    ChatHistory,
    SocialIntegration,
)

__all__ = [
    "User",
    "Contact",
    "ContactActivity",
    "Purchase",
    "EmailTemplate",
    "Workflow",
    "WorkflowRun",
    "WorkflowRunEvent",
    "ABTest",
    "ABTestAssignment",
    "SocialIntegration",
    "Automation",
    "AutomationKeyword",
    "AutomationTrigger",
    "AutomationListener",
    "AutomationPost",
    "ChatHistory",
]
