import html
import json
import logging
from pathlib import Path

from mypy_boto3_ses.client import SESClient

from tenancy.i18n import _, i
from tenancy.models import Notification, NotificationType, SourceType, User
from tenancy.settings import app_settings

logger = logging.getLogger(__name__)

BASE_TEMPLATES_PATH = Path(__file__).absolute().parent.parent / "email_templates"

NT = NotificationType

MESSAGES: dict[NotificationType, str] = {
    NT.APPLICATION_SUBMITTED: i("A rental application was submitted."),
    NT.APPLICATION_UNDER_REVIEW: i("The rental application is under review."),
    NT.APPLICATION_INFO_REQUESTED: i("The property owner needs more information to review your application."),
    NT.APPLICATION_BACKGROUND_CHECK: i("A background check was started for the rental application."),
    NT.APPLICATION_APPROVED: i("The rental application was approved. Your lease is being prepared."),
    NT.APPLICATION_CONDITIONAL_APPROVAL: i("The rental application was approved with conditions."),
    NT.APPLICATION_REJECTED: i("The rental application was not approved."),
    NT.LEASE_SENT: i("Your lease is ready. Please review and accept its terms."),
    NT.LEASE_ACCEPTED: i("The tenant accepted the lease terms. The lease is ready to be signed."),
    NT.LEASE_SIGNATURE_ADDED: i("The other party signed the lease. Your signature is needed."),
    NT.LEASE_SIGNED: i("The lease is signed by both parties."),
    NT.LEASE_MOVE_IN_READY: i("The move-in date is scheduled."),
    NT.PAYMENT_DUE: i("A new payment is due."),
    NT.PAYMENT_DUE_SOON: i("A payment is due soon."),
    NT.PAYMENT_PAID: i("The tenant marked a payment as paid. Please verify it."),
    NT.PAYMENT_VERIFIED: i("Your payment was verified."),
    NT.PAYMENT_OVERDUE: i("A payment is overdue."),
}


def send_notification(ses: SESClient, notification: Notification, recipient: User) -> str:
    """
    Email a notification to its recipient.

    :return: The SES ``MessageId``.
    """
    # All URLs using `app_settings.frontend_url` are routes in the frontend.
    match notification.source_type:
        case SourceType.APPLICATION:
            link = f"{app_settings.frontend_url}/applications/{notification.source_id}"
        case SourceType.LEASE:
            link = f"{app_settings.frontend_url}/leases/{notification.source_id}"
        case SourceType.PAYMENT:
            link = f"{app_settings.frontend_url}/payments/{notification.source_id}"
        case _:
            raise NotImplementedError

    return _send_email(
        ses,
        to_addresses=[recipient.email],
        subject=notification.subject,
        template_name="notification",
        parameters={
            "NAME": html.escape(recipient.name or recipient.email),
            "MESSAGE": _(MESSAGES[notification.notification_type]),
            "LINK": link,
        },
    )


def _send_email(
    ses: SESClient,
    *,
    to_addresses: list[str],
    subject: str,
    template_name: str,
    parameters: dict[str, str],
) -> str:
    original_addresses = to_addresses.copy()

    if app_settings.environment != "production":
        to_addresses = [app_settings.test_mail_receiver]

    if not to_addresses:
        logger.error("No email address provided!")
        return ""

    # Read the HTML template and replace its parameters (like ``NAME``).
    parameters.setdefault("SUBJECT", subject)
    content = (BASE_TEMPLATES_PATH / f"{template_name}.{app_settings.email_template_lang}.html").read_text()
    for key, value in parameters.items():
        content = content.replace("{{%s}}" % key, value)

    logger.info("%s - Email to: %s sent to %s", app_settings.environment, original_addresses, to_addresses)
    return ses.send_templated_email(
        Source=app_settings.email_sender_address,
        Destination={"ToAddresses": to_addresses},
        ReplyToAddresses=[app_settings.reply_to_address],
        Template=f"tenancy-main-{app_settings.email_template_lang}",
        TemplateData=json.dumps(
            {
                "SUBJECT": subject,
                "CONTENT": content,
                "FRONTEND_URL": app_settings.frontend_url,
            }
        ),
    )["MessageId"]
