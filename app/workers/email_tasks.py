"""
Email background tasks.
"""

import logging

from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

ROLE_LABELS = {
    "ADMIN": "an admin",
    "MEMBER": "a member",
    "VIEWER": "a viewer",
}


@celery_app.task(name="app.workers.email_tasks.send_membership_email", bind=True, max_retries=3)
def send_membership_email(
    self,  # type: ignore[no-untyped-def]
    to_email: str,
    org_name: str,
    org_id: str,
    inviter_name: str,
    role: str,
    frontend_url: str,
) -> dict[str, str]:
    """
    Tell a user they were added to an organization, via Resend.

    Args:
        to_email: Recipient email address.
        org_name: Organization display name.
        org_id: Organization id, used for the dashboard link.
        inviter_name: Display name of the admin who added them.
        role: Role granted (ADMIN/MEMBER/VIEWER).
        frontend_url: Frontend base URL for constructing the link.

    Returns:
        Dict with status and message_id.
    """
    try:
        import resend

        from app.core.config import settings

        resend.api_key = settings.RESEND_API_KEY

        org_url = f"{frontend_url}/organizations/{org_id}"
        role_label = ROLE_LABELS.get(role, role.lower())

        params: resend.Emails.SendParams = {
            "from": settings.EMAIL_FROM,
            "to": [to_email],
            "subject": f"You've been added to {org_name} on BeeBuildR",
            "html": f"""
                <h2>Welcome to {org_name}</h2>
                <p><strong>{inviter_name}</strong> added you to
                <strong>{org_name}</strong> as {role_label}.</p>
                <p>
                    <a href="{org_url}"
                       style="background:#f59e0b;color:#fff;padding:12px 24px;
                              border-radius:6px;text-decoration:none;display:inline-block;">
                        Open {org_name}
                    </a>
                </p>
                <p>If you did not expect this, you can leave the organization from its settings page.</p>
            """,
        }

        response = resend.Emails.send(params)
        logger.info("Sent membership email to=%s org_id=%s", to_email, org_id)
        return {"status": "sent", "message_id": response["id"]}

    except Exception as exc:
        logger.warning("Membership email to %s failed: %s", to_email, exc)
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))
