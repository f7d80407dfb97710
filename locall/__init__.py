"""
LoCall Dashboard API.

Multi-tenant backend for the LoCall communications/CRM dashboard: compliance
and GDPR tooling, audit logging, user management, realtime notifications,
third-party integrations and webform analytics.
"""

__version__ = "1.0.0"
