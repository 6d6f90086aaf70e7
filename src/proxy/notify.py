"""HTML mail with the diff of an audited change."""

from __future__ import annotations

import html
import logging
import smtplib
import ssl
from typing import List

from constants import Constants

logger = logging.getLogger(__name__)

_HEAD = """<html>
<head>
<style><!--
  body {background-color:#ffffff;}
  .patch {margin:0;}
  #added {background-color:#ddffdd;}
  #removed {background-color:#ffdddd;}
  #context {background-color:#eeeeee;}
--></style>
</head>
<body>"""

_TAIL = """</body>
</html>"""

ACTION_WORDS = {"POST": "created", "PUT": "updated", "DELETE": "deleted"}


def change_subject(organization: str, method: str, path: str) -> str:
    """Subject line, e.g. ``[ACME CHEF] updated nodes/web1.json``."""
    action = ACTION_WORDS.get(method.upper(), method.lower())
    return f"[{organization.upper()} CHEF] {action} {path}"


def _diff_line(line: str) -> str:
    if line.startswith("+"):
        css_id = "added"
    elif line.startswith("-"):
        css_id = "removed"
    else:
        css_id = "context"
    return f'<pre class="patch" id="{css_id}">{html.escape(line, quote=False)}</pre>'


def create_message(sender: str, recipient: str, subject: str, diff: str) -> str:
    """Full RFC 822 message with an HTML rendering of ``diff``."""
    lines: List[str] = [
        f"From: {sender}",
        f"To: {recipient}",
        f"Subject: {subject}",
        "MIME-version: 1.0",
        'Content-Type: text/html; charset="UTF-8"',
        "",
        _HEAD,
    ]
    lines.extend(_diff_line(line) for line in diff.split("\n"))
    lines.append(_TAIL)
    return "\n".join(lines)


class Mailer:
    """Sends messages through the configured SMTP relay.

    STARTTLS is used when the server offers it; the relay certificate is not
    verified since relays are usually addressed by an internal name.
    """

    def __init__(self, host: str, port: int, helo_name: str = "localhost",
                 timeout: int = Constants.CONNECT_TIMEOUT):
        self.host = host
        self.port = port
        self.helo_name = helo_name
        self.timeout = timeout

    def send(self, sender: str, recipient: str, message: str) -> None:
        """Deliver ``message``.

        Raises:
            smtplib.SMTPException: On protocol errors.
            OSError: When the relay cannot be reached.
        """
        with smtplib.SMTP(self.host, self.port, local_hostname=self.helo_name,
                          timeout=self.timeout) as smtp:
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                context = ssl.create_default_context()
                context.check_hostname = False
                context.verify_mode = ssl.CERT_NONE
                smtp.starttls(context=context)
                smtp.ehlo()
            smtp.sendmail(sender, [recipient], message.encode("utf-8"))
        logger.debug("Sent change notification to %s via %s:%s", recipient, self.host, self.port)
