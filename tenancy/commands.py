import json
import logging
import sys
from contextlib import contextmanager
from datetime import date, datetime

import click
import minify_html
import typer
import typer.cli
from sqlalchemy.orm import joinedload
from sqlmodel import col

from tenancy import aws, mail, models
from tenancy.db import get_db, handle_skipped_record
from tenancy.exceptions import SweepError
from tenancy.lifecycle import payments

logger = logging.getLogger(__name__)

state = {"quiet": False}


class OrderedGroup(typer.cli.TyperCLIGroup):
    # https://github.com/fastapi/typer/blob/adca3254f8c2adc8d9b71b5cdea65c41770bd9b9/typer/cli.py#L55-L57
    # https://github.com/pallets/click/blob/e16088a8569597c55f108ea89af6245898249ec2/src/click/core.py#L1684-L1686
    def list_commands(self, ctx: click.Context) -> list[str]:
        self.maybe_add_run(ctx)
        return list(self.commands)


app = typer.Typer(cls=OrderedGroup)
dev = typer.Typer()
app.add_typer(dev, name="dev", help="Commands for maintainers of the tenancy backend.")


def _today(today: datetime | None) -> date:
    return today.date() if today else models.utcnow().date()


@app.command()
def update_payments_to_overdue(today: datetime = typer.Option(default=None, formats=["%Y-%m-%d"])) -> None:
    """
    Mark PENDING payments as OVERDUE, if their due date (plus the grace days) has passed.

    Notify the tenant and the landlord side of each overdue payment.
    """
    current = _today(today)
    with contextmanager(get_db)() as session:
        payment_ids = [payment.id for payment in models.Payment.overdue_candidates(session, current)]

        count = 0
        for payment_id in payment_ids:
            with handle_skipped_record(session, "Error marking payment as overdue", payment_id=payment_id):
                payment = (
                    session.query(models.Payment)
                    .options(joinedload(models.Payment.lease).joinedload(models.Lease.property))
                    .filter(models.Payment.id == payment_id)
                    .one()
                )
                if payments.mark_overdue(session, payment, current):
                    count += 1

                session.commit()

        logger.info("Marked %d of %d payments as overdue", count, len(payment_ids))
        if not state["quiet"]:
            print(f"Marked {count} payments as overdue")


@app.command()
def generate_rent_payments(today: datetime = typer.Option(default=None, formats=["%Y-%m-%d"])) -> None:
    """
    Create the rent payments of signed leases that fall due in the coming days.

    \b
    -  If the lease isn't signed, skip the lease.
    -  If the rent of a period exists, skip the period.
       Otherwise, create a PENDING payment with the lease's monthly rent and notify the tenant.
    """
    current = _today(today)
    with contextmanager(get_db)() as session:
        lease_ids = [lease.id for lease in models.Lease.billable(session).order_by(col(models.Lease.id))]

        total = 0
        for lease_id in lease_ids:
            with handle_skipped_record(session, "Error generating rent payments", lease_id=lease_id):
                lease = models.Lease.get(session, lease_id)
                total += len(payments.generate_due_rent(session, lease, current))

                session.commit()

        logger.info("Created %d rent payments for %d leases", total, len(lease_ids))
        if not state["quiet"]:
            print(f"Created {total} rent payments")


@app.command()
def send_rent_reminders(today: datetime = typer.Option(default=None, formats=["%Y-%m-%d"])) -> None:
    """Notify tenants of PENDING payments that are due in the coming days. Tenants are reminded once per payment."""
    current = _today(today)
    with contextmanager(get_db)() as session:
        payment_ids = [payment.id for payment in models.Payment.due_soon(session, current)]

        for payment_id in payment_ids:
            with handle_skipped_record(session, "Error sending rent reminder", payment_id=payment_id):
                payments.remind(session, models.Payment.get(session, payment_id))

                session.commit()

        logger.info("Reminded tenants of %d payments", len(payment_ids))
        if not state["quiet"]:
            print(f"Reminded tenants of {len(payment_ids)} payments")


@app.command()
def send_notification_emails() -> None:
    """
    Email the notifications that haven't been emailed.

    If the recipient opted out of emails of the notification's type, the notification is marked as emailed without
    sending an email.
    If the recipient has no email address, the notification is skipped and the error is recorded.
    """
    with contextmanager(get_db)() as session:
        notification_ids = [notification.id for notification in models.Notification.undelivered(session)]

        sent = 0
        for notification_id in notification_ids:
            with handle_skipped_record(session, "Error emailing notification", notification_id=notification_id):
                notification = models.Notification.get(session, notification_id)
                recipient = models.User.get(session, notification.recipient_id)

                if not recipient.email:
                    raise SweepError("Recipient has no email address", data={"recipient_id": recipient.id})

                if recipient.wants_email(notification.notification_type):
                    message_id = mail.send_notification(aws.ses_client, notification, recipient)
                    notification.update(session, emailed_at=models.utcnow(), external_message_id=message_id)
                    sent += 1
                else:
                    notification.update(session, emailed_at=models.utcnow())

                session.commit()

        logger.info("Sent %d emails for %d notifications", sent, len(notification_ids))
        if not state["quiet"]:
            print(f"Sent {sent} emails")


@dev.command()
def cli_input_json(name: str, file: typer.FileText) -> None:
    """Print a JSON string for the aws ses create-template --cli-input-json argument."""
    # aws ses create-template --generate-cli-skeleton
    json.dump(
        {
            "Template": {
                "TemplateName": name,
                "Subject": "{{SUBJECT}}",
                "HtmlPart": minify_html.minify(
                    file.read(),
                    do_not_minify_doctype=True,
                    ensure_spec_compliant_unquoted_attribute_values=True,
                    keep_spaces_between_attributes=True,
                    minify_css=True,
                ),
            }
        },
        sys.stdout,
        indent=4,
        ensure_ascii=False,
    )


# https://typer.tiangolo.com/tutorial/commands/callback/
@app.callback()
def cli(*, quiet: bool = typer.Option(False, "--quiet", "-q")) -> None:  # noqa: FBT003 # false positive
    state["quiet"] = quiet
