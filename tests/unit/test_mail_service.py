import logging

from mail_service import Mailer


async def test_unconfigured_mailer_does_not_log_codes(caplog):
    mailer = Mailer(username="", password="")

    with caplog.at_level(logging.WARNING, logger="mail_service"):
        await mailer.send_reset_code("student@example.com", "482913")

    assert "student@example.com" in caplog.text
    assert "Password reset code" in caplog.text
    assert "482913" not in caplog.text
