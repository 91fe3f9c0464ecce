"""Tests for email rendering and the Resend sender."""

from unittest.mock import patch

import pytest

from sendledger.services.email_service import (
    EmailDeliveryError,
    render_password_reset_email,
    render_verification_email,
    render_welcome_email,
    send_email,
)


class TestRendering:
    """Tests for the Jinja email templates."""

    def test_verification_email(self):
        rendered = render_verification_email("Ada", "http://localhost:8000/auth/verify-email?token=t")

        assert "Verify" in rendered.subject
        assert "Ada" in rendered.html
        assert "http://localhost:8000/auth/verify-email?token=t" in rendered.html

    def test_password_reset_email(self):
        rendered = render_password_reset_email("Ada", "http://localhost:8000/update-password?token=t")

        assert "Reset" in rendered.subject
        assert "update-password?token=t" in rendered.html

    def test_welcome_email(self):
        rendered = render_welcome_email("Ada", "http://localhost:8000/login")

        assert rendered.subject == "Welcome to TOTL Agency"
        assert "http://localhost:8000/login" in rendered.html

    def test_name_is_escaped(self):
        rendered = render_welcome_email("<script>", "http://localhost:8000/login")
        assert "<script>" not in rendered.html


@pytest.mark.asyncio
class TestSendEmail:
    """Tests for send_email."""

    async def test_sends_through_resend(self, test_settings):
        """Should hand the message to Resend and return its id."""
        with (
            patch("sendledger.services.email_service.get_settings", return_value=test_settings),
            patch(
                "sendledger.services.email_service.resend.Emails.send",
                return_value={"id": "msg_123"},
            ) as mock_send,
        ):
            result = await send_email("u@example.com", "Subject", "<p>hi</p>")

        assert result.message_id == "msg_123"
        params = mock_send.call_args.args[0]
        assert params["to"] == ["u@example.com"]
        assert params["from"] == "TOTL Agency <noreply@mail.thetotlagency.com>"

    async def test_provider_error_raises_delivery_error(self, test_settings):
        with (
            patch("sendledger.services.email_service.get_settings", return_value=test_settings),
            patch(
                "sendledger.services.email_service.resend.Emails.send",
                side_effect=RuntimeError("422 invalid from"),
            ),
        ):
            with pytest.raises(EmailDeliveryError):
                await send_email("u@example.com", "Subject", "<p>hi</p>")

    async def test_disabled_sending(self, test_settings):
        settings = test_settings.model_copy(update={"disable_email_sending": True})
        with (
            patch("sendledger.services.email_service.get_settings", return_value=settings),
            patch("sendledger.services.email_service.resend.Emails.send") as mock_send,
        ):
            result = await send_email("u@example.com", "Subject", "<p>hi</p>")

        assert result.message_id == "disabled"
        mock_send.assert_not_called()

    async def test_missing_key_is_noop_in_dev(self, test_settings):
        settings = test_settings.model_copy(update={"resend_api_key": ""})
        with patch("sendledger.services.email_service.get_settings", return_value=settings):
            result = await send_email("u@example.com", "Subject", "<p>hi</p>")

        assert result.message_id == "dev-mode"

    async def test_missing_key_raises_in_production(self, test_settings):
        settings = test_settings.model_copy(
            update={"resend_api_key": "", "environment": "production"}
        )
        with patch("sendledger.services.email_service.get_settings", return_value=settings):
            with pytest.raises(EmailDeliveryError, match="RESEND_API_KEY"):
                await send_email("u@example.com", "Subject", "<p>hi</p>")
