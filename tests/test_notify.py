"""Tests for change notification mails."""

from unittest.mock import MagicMock, patch

from proxy.notify import Mailer, change_subject, create_message


class TestMessage:
    """Subject and HTML body."""

    def test_subject(self):
        assert change_subject("acme", "PUT", "nodes/web1.json") == "[ACME CHEF] updated nodes/web1.json"
        assert change_subject("acme", "DELETE", "roles/base.json") == "[ACME CHEF] deleted roles/base.json"
        assert change_subject("", "POST", "nodes/x.json") == "[ CHEF] created nodes/x.json"

    def test_message_layout(self):
        message = create_message("a@example.com", "b@example.com", "subj",
                                 "Commit : abc\n+added <b>\n-removed\n context")
        headers, body = message.split("\n\n", 1)
        assert headers.splitlines() == [
            "From: a@example.com",
            "To: b@example.com",
            "Subject: subj",
            "MIME-version: 1.0",
            'Content-Type: text/html; charset="UTF-8"',
        ]
        assert body.startswith("<html>")
        assert '<pre class="patch" id="added">+added &lt;b&gt;</pre>' in body
        assert '<pre class="patch" id="removed">-removed</pre>' in body
        assert '<pre class="patch" id="context"> context</pre>' in body
        assert body.endswith("</body>\n</html>")


class TestMailer:
    """SMTP delivery."""

    def test_send_with_starttls(self):
        smtp = MagicMock()
        smtp.__enter__.return_value = smtp
        smtp.has_extn.return_value = True
        with patch("proxy.notify.smtplib.SMTP", return_value=smtp) as factory:
            Mailer("smtp.local", 25, helo_name="chef.local").send("a@x", "b@x", "hello")
        factory.assert_called_once_with("smtp.local", 25, local_hostname="chef.local", timeout=30)
        smtp.starttls.assert_called_once()
        smtp.sendmail.assert_called_once_with("a@x", ["b@x"], b"hello")

    def test_send_without_starttls(self):
        smtp = MagicMock()
        smtp.__enter__.return_value = smtp
        smtp.has_extn.return_value = False
        with patch("proxy.notify.smtplib.SMTP", return_value=smtp):
            Mailer("smtp.local", 25).send("a@x", "b@x", "hello")
        smtp.starttls.assert_not_called()
