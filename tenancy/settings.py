# https://fastapi.tiangolo.com/advanced/settings/#pydantic-settings

import logging.config
from typing import Any

import sentry_sdk
from pydantic_settings import BaseSettings, SettingsConfigDict


def sentry_filter_transactions(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """
    Filter transactions to be sent to Sentry.
    This function prevents health checks of the JWKS endpoint from being sent to Sentry.

    :param event: The event data.
    :param hint: A dictionary of extra data passed to the function.
    :return: The event data if it should be sent to Sentry, otherwise None.
    """
    for breadcrumb in event.get("breadcrumbs", {}).get("values", []):
        url = breadcrumb.get("data", {}).get("url")
        if url and app_settings.jwks_url and url.startswith(app_settings.jwks_url):
            return None
    return event


class Settings(BaseSettings):
    """
    Each setting has a corresponding uppercase environment variable.

    .. seealso:: `Settings Management <https://docs.pydantic.dev/latest/concepts/pydantic_settings/#usage>`__
    """

    #: If "production", emails all recipients. Otherwise, replaces every recipient's email address with
    #: :attr:`~tenancy.settings.Settings.test_mail_receiver`.
    environment: str = "development"
    #: The `logging level <https://docs.python.org/3/library/logging.html#levels>`__ of the root logger.
    log_level: int | str = logging.INFO
    #: PostgreSQL connection string.
    database_url: str = "postgresql:///tenancy?application_name=tenancy_backend"
    #: Connection string that overrides ``DATABASE_URL`` (tests drop all tables).
    test_database_url: str = ""

    # Security

    #: The URL of the JSON Web Key Set with which to verify bearer tokens.
    #:
    #: .. seealso:: :class:`tenancy.auth.JWTAuthorization`
    jwks_url: str = ""

    # Leases

    #: The number of months of a lease, if neither the request nor the property sets one.
    default_lease_term_months: int = 12
    #: The day of the month on which rent is due, if the property doesn't set one.
    default_rent_due_day: int = 1

    # Timeline

    #: The number of days before a rent period's due date, from which its payment obligation is created.
    #:
    #: .. seealso:: :typer:`python-m-tenancy-generate-rent-payments`
    rent_generation_days_ahead: int = 7
    #: The number of days before a payment's due date, from which the tenant is sent a reminder.
    #:
    #: .. seealso:: :typer:`python-m-tenancy-send-rent-reminders`
    rent_reminder_days_before_due: int = 3
    #: The number of days after a payment's due date, after which a PENDING payment becomes OVERDUE.
    #:
    #: .. seealso:: :typer:`python-m-tenancy-update-payments-to-overdue`
    overdue_grace_days: int = 0

    # Pagination

    #: The maximum page size of list endpoints.
    max_page_size: int = 100

    # Email addresses

    #: The verified email address in Amazon SES to use as the FROM email address.
    email_sender_address: str = "tenancy@noreply.example.org"
    #: The email address to which recipients reply.
    reply_to_address: str = "support@example.org"
    #: The email address with which to replace recipient email addresses in a non-production
    #: :attr:`~tenancy.settings.Settings.environment` (for example, your own email address).
    test_mail_receiver: str = "tenancy@noreply.example.org"

    # Email templates

    #: The base URL of the frontend.
    frontend_url: str = "http://localhost:3000"  # also for CORS
    #: The language of the email templates to use.
    email_template_lang: str = "en"

    # Third-party services

    #: Amazon Web Services region.
    aws_region: str = "us-west-2"
    #: Operational user access key.
    aws_access_key: str = ""
    #: Operational user client secret.
    aws_client_secret: str = ""
    #: Sentry DSN.
    sentry_dsn: str = ""

    model_config = SettingsConfigDict(env_file=".env")


app_settings = Settings()

logging.config.dictConfig(
    {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "format": "%(asctime)s %(levelname)s [%(name)s:%(lineno)s] %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "console",
            },
        },
        "loggers": {
            "": {
                "handlers": ["console"],
                "level": app_settings.log_level,
            },
        },
    }
)

if app_settings.sentry_dsn:
    sentry_sdk.init(
        dsn=app_settings.sentry_dsn,
        before_send=sentry_filter_transactions,
        # Set traces_sample_rate to 1.0 to capture 100% of transactions for performance monitoring.
        traces_sample_rate=1.0,
    )
