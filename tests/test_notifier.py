"""Unit tests for auth/notifier.py and auth/audit.py -- side channels of the engine.

Covers:
- SmtpNotifier sends through STARTTLS and returns False on SMTP/socket errors
- LogNotifier never logs the message body (OTP values)
- build_notifier() picks SMTP only when a host is configured
- AuditRecorder.record() swallows and logs repository failures
"""

import logging
import smtplib
from unittest.mock import MagicMock, patch

from auth.audit import AuditAction, AuditRecorder
from auth.models import RequestContext
from auth.notifier import LogNotifier, SmtpNotifier, build_notifier, redact_email
from auth.tokens import utcnow


class TestSmtpNotifier:
    """SMTP delivery with bounded failure modes."""

    def test_send_uses_starttls_and_login(self) -> None:
        notifier = SmtpNotifier(host="smtp.example.com", user="bot@example.com", password="pw")
        with patch("auth.notifier.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            assert notifier.send("alice@example.com", "Verify Your Email", "<strong>123456</strong>") is True
        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=10.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot@example.com", "pw")
        sender, recipients, _ = server.sendmail.call_args.args
        assert sender == "bot@example.com"
        assert recipients == ["alice@example.com"]

    def test_smtp_error_returns_false(self) -> None:
        notifier = SmtpNotifier(host="smtp.example.com")
        with patch("auth.notifier.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            server.sendmail.side_effect = smtplib.SMTPException("boom")
            assert notifier.send("alice@example.com", "s", "b") is False

    def test_connection_error_returns_false(self) -> None:
        notifier = SmtpNotifier(host="smtp.example.com")
        with patch("auth.notifier.smtplib.SMTP", side_effect=OSError("refused")):
            assert notifier.send("alice@example.com", "s", "b") is False

    def test_implicit_tls(self) -> None:
        notifier = SmtpNotifier(host="smtp.example.com", port=465, use_tls=False)
        with patch("auth.notifier.smtplib.SMTP_SSL") as smtp_ssl:
            assert notifier.send("alice@example.com", "s", "b") is True
        assert smtp_ssl.call_args.args == ("smtp.example.com", 465)


class TestLogNotifier:
    """Dev-mode notifier."""

    def test_body_is_never_logged(self, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="identity.notifier"):
            assert LogNotifier().send("alice@example.com", "Verify Your Email", "<strong>987654</strong>")
        assert "987654" not in caplog.text
        assert "alice@example.com" not in caplog.text
        assert "al***@example.com" in caplog.text

    def test_redact_email(self) -> None:
        assert redact_email("alice@example.com") == "al***@example.com"
        assert redact_email("garbage") == "redacted"


class TestBuildNotifier:
    def test_log_notifier_without_host(self, settings_factory) -> None:
        assert isinstance(build_notifier(settings_factory(smtp_host="")), LogNotifier)

    def test_smtp_notifier_with_host(self, settings_factory) -> None:
        settings = settings_factory(smtp_host="smtp.example.com", smtp_from_email="no-reply@example.com")
        notifier = build_notifier(settings)
        assert isinstance(notifier, SmtpNotifier)
        assert notifier.from_email == "no-reply@example.com"


class TestAuditRecorder:
    """Audit writes never abort the calling operation."""

    def test_record_appends_entry(self) -> None:
        repo = MagicMock()
        recorder = AuditRecorder(repo, utcnow)
        ok = recorder.record(AuditAction.LOGIN_SUCCESS, RequestContext("10.0.0.1", "ua"), success=True, account_id=3)
        assert ok is True
        entry = repo.append_audit_entry.call_args.args[0]
        assert entry.action == "LOGIN_SUCCESS"
        assert entry.account_id == 3
        assert entry.ip_address == "10.0.0.1"

    def test_failure_is_logged_and_swallowed(self, caplog) -> None:
        repo = MagicMock()
        repo.append_audit_entry.side_effect = RuntimeError("disk full")
        recorder = AuditRecorder(repo, utcnow)
        with caplog.at_level(logging.ERROR, logger="identity.audit"):
            ok = recorder.record(AuditAction.LOGIN_FAILED, RequestContext(), success=False)
        assert ok is False
        assert "LOGIN_FAILED" in caplog.text
