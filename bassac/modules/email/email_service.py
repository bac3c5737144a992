"""
Email Service Module
====================

Configurable email service supporting Resend, Amazon SES, and SMTP.
Provider is selected via EMAIL_PROVIDER config ('resend', 'ses', or 'smtp').
Every send attempt is recorded in the email_logs table of USER_DB.

Templates cover the editorial flow: verification, password reset, article
approved/rejected, review requested, newsletter confirmation and a generic
notification email.
"""

import logging
import re
import smtplib
import time
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import List, Optional

import boto3
import resend
from botocore.exceptions import BotoCoreError, ClientError

from bassac.core.database import Database
from bassac.core.helpers import now_iso

# Rejects consecutive dots, leading/trailing dots in local part
_VALID_EMAIL = re.compile(r'^[a-zA-Z0-9_%+-]+(\.[a-zA-Z0-9_%+-]+)*@[a-zA-Z0-9-]+(\.[a-zA-Z0-9-]+)*\.[a-zA-Z]{2,}$')

logger = logging.getLogger(__name__)

# Pause between sends to one list (max ~1.66 emails/sec on Resend)
SEND_INTERVAL = 0.6


def init_email_logs_db(db_path):
    with Database.connect(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS email_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                recipient TEXT NOT NULL,
                subject TEXT NOT NULL,
                email_type TEXT,
                status TEXT NOT NULL,
                error_message TEXT,
                sent_at TEXT NOT NULL
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_email_logs_recipient ON email_logs(recipient)")


class EmailService:
    """
    Configuration (set in Flask app.config):
        EMAIL_PROVIDER: 'resend' (default), 'ses', or 'smtp'
        RESEND_API_KEY: Resend API key (provider 'resend')
        AWS_REGION: SES region (default: 'eu-west-1')
        EMAIL_HOST / EMAIL_PORT / EMAIL_PASSWORD: SMTP settings
        EMAIL_ADDRESS: Sender address (default: onboarding@resend.dev)
        EMAIL_BRAND_NAME: Brand name (falls back to SITE_NAME)
        EMAIL_SUPPORT_EMAIL: Support address shown in the footer
        FRONTEND_URL: Base URL for links in emails
    """

    def __init__(self, app=None):
        self.provider = 'resend'
        self.api_key = None
        self.ses_client = None
        self.smtp_host = None
        self.smtp_port = 587
        self.smtp_password = None
        self.sender_email = 'onboarding@resend.dev'
        self.brand_name = 'Bassac Post'
        self.website_url = 'http://localhost:5173'
        self.support_email = 'support@example.com'
        self.style = {}

        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """Initialize email service with Flask app configuration"""
        self.provider = (app.config.get('EMAIL_PROVIDER') or 'resend').lower()
        logger.info(f"Initializing email service (provider: {self.provider})")

        self.sender_email = app.config.get('EMAIL_ADDRESS') or 'onboarding@resend.dev'
        self.brand_name = app.config.get('EMAIL_BRAND_NAME') or app.config.get('SITE_NAME') or 'Bassac Post'
        self.website_url = (app.config.get('FRONTEND_URL') or 'http://localhost:5173').rstrip('/')
        self.support_email = app.config.get('EMAIL_SUPPORT_EMAIL', 'support@example.com')

        custom_style = app.config.get('EMAIL_STYLE', {})
        self.style = {
            'bg': custom_style.get('bg', '#f4f5f7'),
            'card_bg': custom_style.get('card_bg', '#ffffff'),
            'header_bg': custom_style.get('header_bg', '#1e3a8a'),
            'header_text': custom_style.get('header_text', '#ffffff'),
            'text': custom_style.get('text', '#1f2937'),
            'text_secondary': custom_style.get('text_secondary', '#6b7280'),
            'border': custom_style.get('border', '#e5e7eb'),
            'btn_bg': custom_style.get('btn_bg', '#3B82F6'),
            'btn_text': custom_style.get('btn_text', '#ffffff'),
            'font': custom_style.get('font', "'Helvetica Neue', Arial, sans-serif"),
        }

        if self.provider == 'ses':
            self._init_ses(app)
        elif self.provider == 'smtp':
            self._init_smtp(app)
        else:
            self._init_resend(app)

    def _init_resend(self, app):
        self.api_key = app.config.get('RESEND_API_KEY')
        if not self.api_key:
            logger.warning("RESEND_API_KEY not configured - email sending disabled")
            return
        resend.api_key = self.api_key

    def _init_ses(self, app):
        aws_region = app.config.get('AWS_REGION', 'eu-west-1')
        try:
            self.ses_client = boto3.client('ses', region_name=aws_region)
            logger.info(f"SES client initialized (region: {aws_region})")
        except BotoCoreError as e:
            logger.error(f"Failed to initialize SES client: {e}")

    def _init_smtp(self, app):
        self.smtp_host = app.config.get('EMAIL_HOST', 'smtp.gmail.com')
        self.smtp_port = int(app.config.get('EMAIL_PORT', 587))
        self.smtp_password = app.config.get('EMAIL_PASSWORD')
        if not self.smtp_password:
            logger.warning("EMAIL_PASSWORD not configured - SMTP email sending disabled")

    @property
    def is_configured(self):
        if self.provider == 'ses':
            return self.ses_client is not None
        if self.provider == 'smtp':
            return bool(self.smtp_password)
        return bool(self.api_key)

    def _log_email(self, recipient, subject, email_type, status, error_message=None):
        """Log email attempt to database"""
        try:
            db_path = Database.ensure_schema('USER_DB', init_email_logs_db)
            with Database.connect(db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    INSERT INTO email_logs (recipient, subject, email_type, status, error_message, sent_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (recipient, subject, email_type, status, error_message, now_iso()))
        except Exception as e:
            logger.error(f"Failed to log email to database: {e}")

    def send_email(self, to: List[str], subject: str, html_body: str,
                   text_body: Optional[str] = None, email_type: str = 'other') -> bool:
        """
        Send an email to each recipient via the configured provider.

        Returns True if at least one email was sent successfully.
        """
        if isinstance(to, str):
            to = [to]

        valid_recipients = []
        for addr in to or []:
            if addr and _VALID_EMAIL.match(addr):
                valid_recipients.append(addr)
            else:
                logger.warning(f"Skipping invalid email address: {addr}")

        if not valid_recipients:
            logger.error("No valid recipients after filtering")
            return False

        if not self.is_configured:
            for recipient in valid_recipients:
                self._log_email(recipient, subject, email_type, 'skipped', 'Email provider not configured')
            logger.info(f"Email provider not configured, skipped: {subject}")
            return False

        sent_count = 0
        for i, recipient in enumerate(valid_recipients):
            try:
                if self.provider == 'ses':
                    success = self._send_via_ses(recipient, subject, html_body, text_body)
                elif self.provider == 'smtp':
                    success = self._send_via_smtp(recipient, subject, html_body, text_body)
                else:
                    success = self._send_via_resend(recipient, subject, html_body, text_body)

                if success:
                    self._log_email(recipient, subject, email_type, 'sent')
                    sent_count += 1
                else:
                    self._log_email(recipient, subject, email_type, 'failed', 'Provider returned failure')
            except Exception as send_error:
                logger.error(f"Error sending to {recipient}: {send_error}")
                self._log_email(recipient, subject, email_type, 'failed', str(send_error))

            if i < len(valid_recipients) - 1:
                time.sleep(SEND_INTERVAL)

        logger.info(f"Email '{subject}': {sent_count}/{len(valid_recipients)} sent")
        return sent_count > 0

    def _send_via_resend(self, recipient, subject, html_body, text_body=None):
        email_params = {
            "from": self.sender_email,
            "to": recipient,
            "subject": subject,
            "html": html_body
        }
        if text_body:
            email_params["text"] = text_body

        r = resend.Emails.send(email_params)
        if r and r.get('id'):
            return True
        logger.error(f"Resend error for {recipient}: {r}")
        return False

    def _send_via_ses(self, recipient, subject, html_body, text_body=None):
        body = {'Html': {'Charset': 'UTF-8', 'Data': html_body}}
        if text_body:
            body['Text'] = {'Charset': 'UTF-8', 'Data': text_body}

        try:
            self.ses_client.send_email(
                Source=self.sender_email,
                Destination={'ToAddresses': [recipient]},
                Message={
                    'Subject': {'Charset': 'UTF-8', 'Data': subject},
                    'Body': body,
                },
            )
            return True
        except ClientError as e:
            logger.error(f"SES error for {recipient}: {e.response['Error']['Message']}")
            return False

    def _send_via_smtp(self, recipient, subject, html_body, text_body=None):
        msg = MIMEMultipart('alternative')
        msg['From'] = self.sender_email
        msg['To'] = recipient
        msg['Subject'] = subject

        if text_body:
            msg.attach(MIMEText(text_body, 'plain', 'utf-8'))
        msg.attach(MIMEText(html_body, 'html', 'utf-8'))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                server.login(self.sender_email, self.smtp_password)
                server.send_message(msg)
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error for {recipient}: {e}")
            return False

    # ==================== Layout ====================

    def _render(self, heading, paragraphs, cta_url=None, cta_label=None, note=None):
        """Shared HTML layout: branded header, body paragraphs, optional button and note"""
        s = self.style
        body_html = '\n'.join(
            f'<p style="font-size: 16px; margin: 16px 0; line-height: 1.7;">{p}</p>' for p in paragraphs
        )
        button = ''
        if cta_url:
            button = f"""
            <div style="text-align: center; margin: 32px 0;">
                <a href="{cta_url}" style="display: inline-block; background: {s['btn_bg']}; color: {s['btn_text']}; padding: 14px 28px; text-decoration: none; font-weight: bold; border-radius: 6px;">{cta_label}</a>
            </div>"""
        note_html = ''
        if note:
            note_html = f'<p style="font-size: 13px; color: {s["text_secondary"]};">{note}</p>'

        return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{heading} - {self.brand_name}</title>
</head>
<body style="font-family: {s['font']}; line-height: 1.6; color: {s['text']}; background: {s['bg']}; max-width: 600px; margin: 0 auto; padding: 24px;">
    <div style="background: {s['card_bg']}; border: 1px solid {s['border']}; border-radius: 8px; overflow: hidden;">
        <div style="background: {s['header_bg']}; color: {s['header_text']}; padding: 28px; text-align: center;">
            <h1 style="font-size: 22px; margin: 0; letter-spacing: 1px;">{self.brand_name}</h1>
        </div>
        <div style="padding: 36px 32px;">
            <h2 style="font-size: 20px; margin: 0 0 16px 0;">{heading}</h2>
            {body_html}
            {button}
            {note_html}
        </div>
        <div style="padding: 20px; text-align: center; font-size: 13px; color: {s['text_secondary']}; border-top: 1px solid {s['border']};">
            <p style="margin: 4px 0;">{self.brand_name} . {datetime.now().year}</p>
            <p style="margin: 4px 0;">Questions? <a href="mailto:{self.support_email}">{self.support_email}</a></p>
        </div>
    </div>
</body>
</html>
        """

    @staticmethod
    def _name(user):
        return escape(user.get('first_name') or user.get('full_name') or 'there')

    # ==================== Account ====================

    def send_verification_email(self, user, token):
        url = f"{self.website_url}/verify-email?token={token}"
        subject = f"Verify your email - {self.brand_name}"
        html = self._render(
            'Verify your email',
            [f"Hi {self._name(user)},",
             f"Thanks for joining {escape(self.brand_name)}. Please confirm your email address."],
            url, 'Verify Email', 'This link expires in 24 hours.'
        )
        text = f"Hi {user.get('first_name', '')},\n\nConfirm your email: {url}\n\nThis link expires in 24 hours."
        return self.send_email([user['email']], subject, html, text, 'verification')

    def send_password_reset_email(self, user, token):
        url = f"{self.website_url}/reset-password?token={token}"
        subject = f"Reset your password - {self.brand_name}"
        html = self._render(
            'Reset your password',
            [f"Hi {self._name(user)},",
             "We received a request to reset your password. If this wasn't you, ignore this email."],
            url, 'Reset Password', 'This link expires in 1 hour.'
        )
        text = f"Reset your password: {url}\n\nThis link expires in 1 hour."
        return self.send_email([user['email']], subject, html, text, 'password_reset')

    # ==================== Editorial ====================

    def _article_url(self, article):
        return f"{self.website_url}/article/{article.get('slug', '')}"

    def send_article_approved_email(self, user, article, notes=None):
        title = escape(article.get('title', ''))
        paragraphs = [f"Hi {self._name(user)},",
                      f"Your article <strong>{title}</strong> has been approved and is now live."]
        if notes:
            paragraphs.append(f"Reviewer notes: {escape(notes)}")
        html = self._render('Your article is published', paragraphs, self._article_url(article), 'View Article')
        text = f"Your article '{article.get('title', '')}' has been approved.\n\n{self._article_url(article)}"
        return self.send_email([user['email']], f"Article approved: {article.get('title', '')}", html, text,
                               'article_approved')

    def send_article_rejected_email(self, user, article, reason):
        title = escape(article.get('title', ''))
        html = self._render(
            'Your article needs revision',
            [f"Hi {self._name(user)},",
             f"Your article <strong>{title}</strong> was not approved.",
             f"Reason: {escape(reason or '')}"],
            f"{self.website_url}/dashboard/articles/{article.get('id')}/edit", 'Edit Article'
        )
        text = f"Your article '{article.get('title', '')}' needs revision.\n\nReason: {reason}"
        return self.send_email([user['email']], f"Article needs revision: {article.get('title', '')}", html, text,
                               'article_rejected')

    def send_review_requested_email(self, reviewers, article, author_name):
        recipients = [r['email'] for r in reviewers if r.get('email')]
        if not recipients:
            return False
        html = self._render(
            'New article awaiting review',
            [f"<strong>{escape(author_name or 'A writer')}</strong> submitted "
             f"<strong>{escape(article.get('title', ''))}</strong> for review."],
            f"{self.website_url}/dashboard/review", 'Open Review Queue'
        )
        text = f"{author_name} submitted '{article.get('title', '')}' for review."
        return self.send_email(recipients, f"Review requested: {article.get('title', '')}", html, text,
                               'review_requested')

    # ==================== Newsletter ====================

    def send_newsletter_confirmation(self, subscriber):
        url = f"{self.website_url}/newsletter/confirm?token={subscriber['confirm_token']}"
        greeting = escape(subscriber.get('name') or 'there')
        html = self._render(
            'Confirm your subscription',
            [f"Hi {greeting},", f"Please confirm that you want to receive news from {escape(self.brand_name)}."],
            url, 'Confirm Subscription',
            f'<a href="{self.website_url}/newsletter/unsubscribe?token={subscriber["unsubscribe_token"]}">'
            'Unsubscribe</a>'
        )
        text = f"Confirm your subscription: {url}"
        return self.send_email([subscriber['email']], f"Confirm your subscription to {self.brand_name}", html,
                               text, 'newsletter_confirmation')

    # ==================== Generic ====================

    def send_notification_email(self, user, title, message, link=None):
        url = f"{self.website_url}{link}" if link and link.startswith('/') else link
        html = self._render(escape(title), [f"Hi {self._name(user)},", escape(message)],
                            url, 'View' if url else None)
        text = f"{title}\n\n{message}" + (f"\n\n{url}" if url else '')
        return self.send_email([user['email']], title, html, text, 'notification')


email_service = EmailService()
