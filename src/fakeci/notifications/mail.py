# notifications/mail.py
from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr, parseaddr
from typing import List, Optional

from pydantic import BaseModel, Field

from ..errors import ConfigError
from ..results import ExecutionResult
from . import Notifier

logger = logging.getLogger(__name__)


class SMTPConfig(BaseModel):
    addr: str
    port: int = 25


def build_status(result: ExecutionResult) -> str:
    return "Success" if result.success else "Failure"


def render_text(result: ExecutionResult) -> str:
    """Plain-text summary of a pipeline run."""
    ctx = result.context
    lines = [
        f"Build results for {ctx.repo_name} ({ctx.repo_url})",
        f"Branch: {ctx.branch}",
    ]
    if ctx.commit.hash:
        lines.append(f"Commit: {ctx.commit.hash}")
        if ctx.commit.author.name:
            lines.append(f"Author: {ctx.commit.author}")
        if ctx.commit.message:
            lines.append("")
            lines.extend(f"    {m}" for m in ctx.commit.message.splitlines())
    lines.append("")
    lines.append(
        f"Status: {build_status(result)} in {int(result.duration.total_seconds())}s"
    )

    for job in result.job_results:
        lines.append("")
        lines.append(
            f"== {job.name}: {'success' if job.success else 'failure'} "
            f"({int(job.duration.total_seconds())}s) =="
        )
        for entry in job.logs:
            lines.append(entry.rstrip("\n"))
    return "\n".join(lines) + "\n"


class Mailer(BaseModel, Notifier):
    """
    Mails build results to the commit author, with `recipients` in CC.

    Config (the `config:` part of a `type: mailer` notifier):
        from: "fakeci <fakeci@example.org>"
        reply_to: ops@example.org      # optional
        recipients: [team@example.org] # optional
        server: {addr: localhost, port: 25}
    """
    sender: str = Field(..., alias="from")
    reply_to: Optional[str] = None
    recipients: List[str] = Field(default_factory=list)
    server: SMTPConfig

    model_config = {"populate_by_name": True}

    def build_message(self, result: ExecutionResult) -> EmailMessage:
        msg = EmailMessage()
        author = result.context.commit.author
        if author.email:
            msg["To"] = formataddr((author.name, author.email))
        if self.recipients:
            cc = [formataddr(parseaddr(r)) for r in self.recipients]
            if "To" in msg:
                msg["Cc"] = ", ".join(cc)
            else:
                msg["To"] = ", ".join(cc)
        if "To" not in msg:
            raise ConfigError("mailer has nobody to send to: no commit author and no recipients")

        msg["From"] = formataddr(parseaddr(self.sender))
        if self.reply_to:
            msg["Reply-To"] = self.reply_to
        status = "Success!" if result.success else "Failure"
        msg["Subject"] = f"build results for {result.context.branch}: {status}"
        msg.set_content(render_text(result))
        return msg

    def send(self, result: ExecutionResult) -> None:
        msg = self.build_message(result)
        logger.debug("Sending mail to %s via %s:%d", msg["To"], self.server.addr, self.server.port)
        with smtplib.SMTP(self.server.addr, self.server.port) as smtp:
            smtp.send_message(msg)
