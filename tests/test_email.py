import smtplib

import pytest

from authservice.service import email as email_module
from authservice.service.email import MockEmailClient, NotificationError, SMTPEmailClient
from authservice.storage.models import Email


async def test_mock_client_records_messages():
    client = MockEmailClient()
    await client.send_email(Email("a@b.com"), "2FA Code", "123456")
    assert client.sent == [(Email("a@b.com"), "2FA Code", "123456")]
    assert client.last_for(Email("a@b.com"))[2] == "123456"
    assert client.last_for(Email("x@b.com")) is None


async def test_mock_client_failure_mode():
    client = MockEmailClient(fail=True)
    with pytest.raises(NotificationError):
        await client.send_email(Email("a@b.com"), "2FA Code", "123456")
    assert client.sent == []


async def test_unconfigured_smtp_logs_instead_of_sending(monkeypatch):
    def _fail(*args, **kwargs):
        raise AssertionError("SMTP should not be used when unconfigured")

    monkeypatch.setattr(smtplib, "SMTP", _fail)
    client = SMTPEmailClient()
    assert not client.is_configured
    await client.send_email(Email("a@b.com"), "2FA Code", "123456")


class RecordingSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.calls = []
        RecordingSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append(("login", user))

    def sendmail(self, sender, recipient, message):
        self.calls.append(("sendmail", sender, recipient, message))


async def test_configured_smtp_sends_with_starttls(monkeypatch):
    RecordingSMTP.instances = []
    monkeypatch.setattr(email_module.smtplib, "SMTP", RecordingSMTP)
    client = SMTPEmailClient(
        smtp_host="mail.example.com",
        smtp_user="mailer",
        smtp_password="pw",
        from_email="noreply@example.com",
    )
    await client.send_email(Email("a@b.com"), "2FA Code", "654321")
    (smtp,) = RecordingSMTP.instances
    assert smtp.calls[0] == "starttls"
    assert smtp.calls[1] == ("login", "mailer")
    _, sender, recipient, message = smtp.calls[2]
    assert (sender, recipient) == ("noreply@example.com", "a@b.com")
    assert "654321" in message


async def test_smtp_failure_raises_notification_error(monkeypatch):
    class RefusingSMTP(RecordingSMTP):
        def sendmail(self, sender, recipient, message):
            raise smtplib.SMTPRecipientsRefused({recipient: (550, b"no such user")})

    monkeypatch.setattr(email_module.smtplib, "SMTP", RefusingSMTP)
    client = SMTPEmailClient(smtp_host="mail.example.com", from_email="noreply@example.com")
    with pytest.raises(NotificationError):
        await client.send_email(Email("a@b.com"), "2FA Code", "654321")
