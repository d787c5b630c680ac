"""
Stage 03: Remove PII from the retained data.

Field-level rewrites only; nothing here cascades. Runs after the sweep so
that only surviving rows are touched.
"""
from dataclasses import dataclass

from local_data_prune.config_interface import AnonymizeSettings
from local_data_prune.logger import get_logger
from local_data_prune.stage_03_anonymize.database_stage_03_anonymize import Stage03AnonymizeDatabaseInterface

logger = get_logger(__name__)


@dataclass
class AnonymizeStats:
    """Rows touched by the PII rewrite."""

    users_rewritten: int = 0
    sessions_deleted: int = 0
    comments_scrubbed: int = 0


def anonymize(db: Stage03AnonymizeDatabaseInterface, settings: AnonymizeSettings) -> AnonymizeStats:
    """
    Rewrite user emails, drop sessions, scrub commenters, reset the admin email.

    :param db: Open stage adapter.
    :param settings: Local domain and option names.
    :return: Counters of rewritten rows.
    """
    stats = AnonymizeStats()
    domain = settings.local_domain

    logger.info(" * Removing PII from users.")
    users = db.list_users()
    with db.transaction():
        for user in users:
            db.update_user_email(user.id, f"user-{user.id}@{domain}")
    stats.users_rewritten = len(users)

    # Session tokens include users' IP address.
    logger.info(" * Removing PII from user_meta.")
    stats.sessions_deleted = db.delete_user_meta(settings.session_meta_key)

    logger.info(" * Removing PII from comments.")
    stats.comments_scrubbed = db.scrub_comment_authors(f"commenter@{domain}")

    logger.info(" * Overwriting `%s` option.", settings.admin_email_option)
    db.set_option(settings.admin_email_option, f"admin@{domain}")
    db.delete_option(settings.pending_admin_email_option)

    return stats
