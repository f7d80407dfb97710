"""
Domain services. Each service is bound to one async database session.
"""

from locall.services.audit import AuditService, RequestContext, request_context_from
from locall.services.dashboard import DashboardService
from locall.services.gdpr import GDPRService
from locall.services.integrations import IntegrationService
from locall.services.notifications import NotificationService, NotificationSubscription
from locall.services.users import UserManagementService
from locall.services.webforms import WebformService
from locall.services.webhooks import WebhookProcessor

__all__ = [
    "AuditService",
    "RequestContext",
    "request_context_from",
    "DashboardService",
    "GDPRService",
    "IntegrationService",
    "NotificationService",
    "NotificationSubscription",
    "UserManagementService",
    "WebformService",
    "WebhookProcessor",
]
