"""
Notification service.

Everything here is best effort: a failure to store or email a notification is
logged and never reaches the caller.
"""

import logging

from bassac.core.logging_service import db_log
from bassac.modules.auth.database import UserDatabase
from bassac.modules.email import email_service
from .database import create_notification_db, mark_email_sent_db

logger = logging.getLogger(__name__)


def notify(recipient_id, type, title, message, link=None, send_email=False, **extra):
    """Store a notification and optionally email it. Returns the notification or None"""
    try:
        notification = create_notification_db(recipient_id, type, title, message, link=link, **extra)
    except Exception as e:
        logger.error(f"Failed to create notification for user {recipient_id}: {e}")
        db_log('error', 'notifications', 'Failed to create notification',
               {'recipient_id': recipient_id, 'type': type, 'error': str(e)})
        return None

    if send_email:
        try:
            user = UserDatabase.get_user_by_id(recipient_id)
            if user and email_service.send_notification_email(user, title, message, link):
                mark_email_sent_db(notification['id'])
                notification['email_sent'] = True
        except Exception as e:
            logger.error(f"Failed to email notification {notification['id']}: {e}")

    return notification


def _article_link(article):
    return f"/article/{article.get('slug')}"


def notify_article_approved(article, reviewer_id=None):
    return notify(
        article['author_id'], 'article_approved', 'Article Approved ✅',
        f'Your article "{article["title"]}" has been approved and published.',
        link=_article_link(article), related_article_id=article['id'], related_user_id=reviewer_id,
        priority='high',
    )


def notify_article_rejected(article, reason, reviewer_id=None):
    return notify(
        article['author_id'], 'article_rejected', 'Article Needs Revision',
        f'Your article "{article["title"]}" needs revision: {reason}',
        link=f"/dashboard/articles/{article['id']}/edit", related_article_id=article['id'],
        related_user_id=reviewer_id, priority='high', metadata={'reason': reason},
    )


def notify_article_published(article):
    return notify(
        article['author_id'], 'article_published', 'Article Published 🎉',
        f'Your article "{article["title"]}" is now live.',
        link=_article_link(article), related_article_id=article['id'],
    )


def notify_article_submitted(article, author_name=None):
    """Fan out to every active admin/editor except the author"""
    reviewers = UserDatabase.get_users_by_roles(('admin', 'editor'), exclude_id=article['author_id'])
    sent = []
    for reviewer in reviewers:
        notification = notify(
            reviewer['id'], 'article_submitted', 'New Article for Review 📝',
            f'{author_name or "A writer"} submitted "{article["title"]}" for review.',
            link='/dashboard/review', related_article_id=article['id'], related_user_id=article['author_id'],
        )
        if notification:
            sent.append(notification)

    try:
        email_service.send_review_requested_email(reviewers, article, author_name)
    except Exception as e:
        logger.error(f"Failed to email reviewers for article {article['id']}: {e}")
    return sent


def notify_comment_received(article, comment, commenter_name):
    return notify(
        article['author_id'], 'comment_received', 'New Comment on Your Article 💬',
        f'{commenter_name} commented on "{article["title"]}".',
        link=f"{_article_link(article)}#comment-{comment['id']}", related_article_id=article['id'],
        related_comment_id=comment['id'], related_user_id=comment.get('author_id'),
    )


def notify_comment_reply(parent_comment, reply, article, replier_name):
    return notify(
        parent_comment['author_id'], 'comment_reply', 'New Reply to Your Comment 💬',
        f'{replier_name} replied to your comment on "{article["title"]}".',
        link=f"{_article_link(article)}#comment-{reply['id']}", related_article_id=article['id'],
        related_comment_id=reply['id'], related_user_id=reply.get('author_id'),
    )


def notify_comment_moderated(comment, article, approved):
    if not comment.get('author_id'):
        return None
    if approved:
        return notify(comment['author_id'], 'comment_approved', 'Comment Approved',
                      f'Your comment on "{article["title"]}" is now visible.',
                      link=_article_link(article), related_article_id=article['id'],
                      related_comment_id=comment['id'])
    return notify(comment['author_id'], 'comment_rejected', 'Comment Not Approved',
                  f'Your comment on "{article["title"]}" was not approved.',
                  related_article_id=article['id'], related_comment_id=comment['id'])


def notify_role_changed(user_id, new_role, changed_by=None):
    return notify(
        user_id, 'role_changed', 'Your Role Has Changed',
        f'Your account role is now "{new_role}".',
        link='/dashboard', related_user_id=changed_by, priority='high', metadata={'role': new_role},
        send_email=True,
    )


def announce(title, message, link=None, priority='normal'):
    """System announcement to every active user. Returns the number delivered"""
    delivered = 0
    for user_id in UserDatabase.get_active_user_ids():
        if notify(user_id, 'system_announcement', title, message, link=link, priority=priority):
            delivered += 1
    db_log('info', 'notifications', 'System announcement sent', {'title': title, 'recipients': delivered})
    return delivered


def notify_newsletter_subscribed(email, source=None):
    """Tell admins about a confirmed newsletter subscriber"""
    sent = 0
    for admin in UserDatabase.get_users_by_roles(('admin',)):
        if notify(admin['id'], 'newsletter_subscribed', 'New Newsletter Subscriber',
                  f'{email} confirmed their subscription' + (f' (via {source})' if source else '') + '.',
                  link='/dashboard/newsletter', priority='low'):
            sent += 1
    return sent
