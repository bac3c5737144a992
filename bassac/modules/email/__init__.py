"""
Email Module
============

Provides email sending over Resend, SES or SMTP with the editorial templates.
"""

from .email_service import EmailService, email_service, init_email_logs_db

__all__ = ['EmailService', 'email_service', 'init_email_logs_db']
