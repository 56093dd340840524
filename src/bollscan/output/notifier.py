"""Email notifications for live signals and heartbeats.

SMTP is blocking, so each send runs in a worker thread via
asyncio.to_thread. Ports 465 and 994 use implicit TLS (SMTP over SSL);
any other port upgrades with STARTTLS.
"""

import asyncio
import html
import smtplib
import ssl
from datetime import datetime, timezone
from email.message import EmailMessage

from bollscan.config import EmailSettings
from bollscan.exceptions import NotificationError
from bollscan.logging import get_logger
from bollscan.signals.models import Signal

logger = get_logger(__name__)

SSL_PORTS = frozenset({465, 994})

_STYLE = """
    body { font-family: Arial, sans-serif; }
    table { border-collapse: collapse; width: 100%; }
    th, td { border: 1px solid #ddd; padding: 8px; text-align: left; }
    th { background-color: #4CAF50; color: white; }
    tr:nth-child(even) { background-color: #f2f2f2; }
"""


def _now_str() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def build_alert_html(signals: list[Signal], oi_multiplier: float = 0.91) -> str:
    """Render the HTML body listing fired signals."""
    rows = []
    for s in signals:
        oi_ratio = s.current_oi / s.min_oi_3d if s.min_oi_3d > 0 else 0.0
        rows.append(
            "<tr>"
            f"<td>{html.escape(s.symbol)}</td>"
            f"<td>{html.escape(s.datetime)}</td>"
            f'<td style="color: green;">{s.price:.4f}</td>'
            f"<td>{s.primary_band.upper:.4f}</td>"
            f"<td>{s.mid_band.middle:.4f}</td>"
            f"<td>{s.coarse_band.middle:.4f}</td>"
            f"<td>{oi_ratio:.2f}x</td>"
            f"<td>{s.volume_ratio:.2f}x</td>"
            "</tr>"
        )

    return f"""<!DOCTYPE html>
<html>
<head><style>{_STYLE}</style></head>
<body>
    <h2>Multi-Timeframe Bollinger Breakout Signals</h2>
    <p>Generated at: {_now_str()}</p>
    <h3>Conditions</h3>
    <ol>
        <li>Price &gt; primary upper band</li>
        <li>Price &gt; mid middle band</li>
        <li>Price &gt; coarse middle band</li>
        <li>Primary: 25+ of the last 50 closes below the upper band</li>
        <li>Mid: 25+ of the last 50 closes below the middle band</li>
        <li>Current OI * {oi_multiplier} &gt; 3-day minimum OI</li>
        <li>Coarse volume * 2 &gt; previous 6 bars combined</li>
    </ol>
    <h3>Signals ({len(signals)})</h3>
    <table>
        <tr>
            <th>Symbol</th><th>Bar close</th><th>Price</th><th>Primary upper</th>
            <th>Mid middle</th><th>Coarse middle</th><th>OI ratio</th><th>Volume ratio</th>
        </tr>
        {"".join(rows)}
    </table>
</body>
</html>"""


def build_heartbeat_html(cycles: int) -> str:
    """Render the HTML body of the liveness heartbeat."""
    return f"""<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; padding: 20px;">
    <h2>Breakout Monitor Heartbeat</h2>
    <p style="color: green; font-size: 24px;">System is running normally</p>
    <p>No signals fired in the last {cycles} monitor cycles.</p>
    <p>Generated at: {_now_str()}</p>
</body>
</html>"""


class EmailNotifier:
    """Sends HTML emails over SMTP.

    When disabled in settings, sends are logged and skipped.
    """

    def __init__(self, settings: EmailSettings, oi_multiplier: float = 0.91) -> None:
        self._settings = settings
        self._oi_multiplier = oi_multiplier

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    async def alert(self, signals: list[Signal]) -> bool:
        """Email a list of fired signals.

        Returns:
            True if an email was sent, False if there was nothing to send or
            notifications are disabled.

        Raises:
            NotificationError: If SMTP delivery fails.
        """
        if not signals:
            return False
        subject = f"Breakout signals: {len(signals)} symbol(s) - {_now_str()}"
        body = build_alert_html(signals, self._oi_multiplier)
        return await self._send(subject, body)

    async def heartbeat(self, cycles: int) -> bool:
        """Email a liveness notice after ``cycles`` monitor cycles without signals."""
        subject = f"Breakout monitor heartbeat - {_now_str()}"
        return await self._send(subject, build_heartbeat_html(cycles))

    async def _send(self, subject: str, body: str) -> bool:
        if not self._settings.enabled:
            logger.info("email_disabled_skip", subject=subject)
            return False

        message = self._build_message(subject, body)
        await asyncio.to_thread(self._deliver, message)
        logger.info("email_sent", subject=subject, to=self._settings.to_addr)
        return True

    def _build_message(self, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self._settings.from_addr
        message["To"] = self._settings.to_addr
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(body, subtype="html")
        return message

    def _deliver(self, message: EmailMessage) -> None:
        s = self._settings
        try:
            if s.smtp_port in SSL_PORTS:
                smtp = smtplib.SMTP_SSL(
                    s.smtp_server,
                    s.smtp_port,
                    timeout=s.timeout_seconds,
                    context=ssl.create_default_context(),
                )
            else:
                smtp = smtplib.SMTP(s.smtp_server, s.smtp_port, timeout=s.timeout_seconds)
            with smtp:
                if s.smtp_port not in SSL_PORTS:
                    smtp.starttls(context=ssl.create_default_context())
                if s.username:
                    smtp.login(s.username, s.password.get_secret_value())
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Email delivery failed: {e}") from e
