import asyncio
from dataclasses import dataclass
from pathlib import Path

import resend
from jinja2 import Environment, FileSystemLoader, TemplateError

from sendledger.config import get_settings
from sendledger.core.logging import get_logger

logger = get_logger(__name__)

# Initialize Jinja2 environment for email templates
template_dir = Path(__file__).parent.parent / "emails" / "templates"
jinja_env = Environment(loader=FileSystemLoader(template_dir), autoescape=True)


class EmailDeliveryError(Exception):
    """Raised when an email could not be handed to the provider."""


@dataclass(frozen=True, slots=True)
class RenderedEmail:
    subject: str
    html: str


@dataclass(frozen=True, slots=True)
class SendResult:
    message_id: str | None


def _init_resend() -> None:
    """Initialize Resend API with API key."""
    settings = get_settings()
    if settings.resend_api_key:
        resend.api_key = settings.resend_api_key


def _fallback_html(heading: str, body: str, action_url: str, action_label: str) -> str:
    """Plain HTML used when a template cannot be rendered."""
    return f"""
        <html>
        <body style="font-family: sans-serif; padding: 20px;">
            <h2>{heading}</h2>
            <p>{body}</p>
            <p>
                <a href="{action_url}"
                   style="background-color: #000; color: #fff; padding: 12px 24px;
                          text-decoration: none; border-radius: 4px; display: inline-block;">
                    {action_label}
                </a>
            </p>
            <p style="color: #999; font-size: 12px;">
                If you didn't request this email, you can safely ignore it.
            </p>
        </body>
        </html>
        """


def _render(template_name: str, fallback: str, **context: str) -> str:
    try:
        return jinja_env.get_template(template_name).render(**context)
    except TemplateError as e:
        logger.bind(template=template_name, error=str(e)).warning("email_template_fallback")
        return fallback


def render_verification_email(name: str, verification_url: str) -> RenderedEmail:
    html = _render(
        "verify_email.html",
        _fallback_html(
            f"Welcome, {name}",
            "Please confirm your email address to finish setting up your account.",
            verification_url,
            "Verify Email",
        ),
        name=name,
        verification_url=verification_url,
    )
    return RenderedEmail(subject="Verify Your Email Address - TOTL Agency", html=html)


def render_password_reset_email(name: str, reset_url: str) -> RenderedEmail:
    html = _render(
        "password_reset.html",
        _fallback_html(
            f"Hi {name}",
            "We received a request to reset your password. This link expires in 1 hour.",
            reset_url,
            "Reset Password",
        ),
        name=name,
        reset_url=reset_url,
    )
    return RenderedEmail(subject="Reset Your Password - TOTL Agency", html=html)


def render_welcome_email(name: str, login_url: str) -> RenderedEmail:
    html = _render(
        "welcome.html",
        _fallback_html(
            f"Welcome to TOTL Agency, {name}",
            "Your account is ready.",
            login_url,
            "Sign In",
        ),
        name=name,
        login_url=login_url,
    )
    return RenderedEmail(subject="Welcome to TOTL Agency", html=html)


async def send_email(to: str, subject: str, html: str, text: str | None = None) -> SendResult:
    """
    Send an email through Resend.

    Args:
        to: Recipient email address
        subject: Subject line
        html: Rendered HTML body
        text: Optional plain-text body

    Returns:
        SendResult with the provider message id

    Raises:
        EmailDeliveryError: provider rejected the message, or no API key in production
    """
    settings = get_settings()

    if settings.disable_email_sending:
        logger.bind(to=to, subject=subject).warning("email_sending_disabled")
        return SendResult(message_id="disabled")

    if not settings.resend_api_key:
        # Dev/test: no-op success so local flows are not blocked.
        # Production: fail loudly rather than silently lose email.
        if not settings.is_production:
            logger.bind(to=to, subject=subject).info("resend_api_key_not_set_dev_noop")
            return SendResult(message_id="dev-mode")
        raise EmailDeliveryError("RESEND_API_KEY is not defined")

    _init_resend()

    params: resend.Emails.SendParams = {
        "from": f"{settings.email_from_name} <noreply@{settings.email_domain}>",
        "to": [to],
        "subject": subject,
        "html": html,
    }
    if text:
        params["text"] = text

    try:
        # Resend's client is synchronous
        response = await asyncio.to_thread(resend.Emails.send, params)
    except Exception as e:
        logger.bind(to=to, subject=subject, error=str(e)).error("email_send_failed")
        raise EmailDeliveryError(f"Failed to send email: {e}") from e

    message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
    logger.bind(to=to, message_id=message_id).info("email_sent")
    return SendResult(message_id=message_id)
