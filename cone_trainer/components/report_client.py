import asyncio
import html
import httpx
import logging
import os
from datetime import datetime
from typing import Dict, List, Optional, Set

from .errors import CollaboratorError

logger = logging.getLogger(__name__)

RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
REPORT_EMAIL_FROM = os.getenv("REPORT_EMAIL_FROM", "onboarding@resend.dev")
REPORT_EMAIL_TO = os.getenv("REPORT_EMAIL_TO", "")

REPORT_TITLE = "Universal Cone Challenge Simulation Report"


def _items(values: List[str]) -> str:
    return "".join(f"<li>{html.escape(str(value))}</li>" for value in values)


def render_report_html(name: str, score: int, feedback: Dict, transcript: List[Dict[str, str]]) -> str:
    """HTML body of the simulation report e-mail"""
    transcript_html = "".join(
        f"<p><strong>{'Rep' if turn['role'] == 'user' else 'Dr. Hayes'}:</strong> "
        f"{html.escape(turn['content'])}</p>"
        for turn in transcript
    )

    claims = feedback.get("incorrectClaims") or []
    alerts_html = f"<h4>Accuracy Alerts:</h4><ul>{_items(claims)}</ul>" if claims else ""

    return (
        f"<h1>{REPORT_TITLE}</h1>"
        f"<p><strong>User:</strong> {html.escape(name)}</p>"
        f"<p><strong>Date:</strong> {datetime.now().strftime('%Y-%m-%d %H:%M')}</p>"
        "<hr />"
        f"<h3>Total Score: {score}/100</h3>"
        f"<h4>Strengths:</h4><ul>{_items(feedback.get('strengths') or [])}</ul>"
        f"<h4>Improvements:</h4><ul>{_items(feedback.get('improvements') or [])}</ul>"
        f"{alerts_html}"
        "<hr />"
        "<h3>Full Transcript:</h3>"
        f"{transcript_html}"
    )


class ReportClient:
    """
    Sends simulation reports through Resend.
    Dispatch is fire-and-forget: failures are logged, never raised to the caller.
    """

    def __init__(self, api_key: str = None, recipient: str = None, sender: str = None):
        self.api_key = api_key if api_key is not None else RESEND_API_KEY
        self.recipient = recipient if recipient is not None else REPORT_EMAIL_TO
        self.sender = sender or REPORT_EMAIL_FROM
        self.client = httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
        self._tasks: Set[asyncio.Task] = set()

        if not self.configured:
            logger.info("ReportClient: RESEND_API_KEY or REPORT_EMAIL_TO not set, reports disabled")

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.recipient)

    async def send_report(self, name: str, score: int, feedback: Dict, transcript: List[Dict[str, str]]):
        """
        Raises:
            CollaboratorError: Resend rejected the request or was unreachable
        """
        payload = {
            "from": self.sender,
            "to": self.recipient,
            "subject": f"Simulation Report: {name} ({score}%)",
            "html": render_report_html(name, score, feedback, transcript),
        }
        try:
            response = await self.client.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=payload,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CollaboratorError("report", str(e)) from e
        logger.info(f"ReportClient: Report for '{name}' sent to {self.recipient}")

    def dispatch_report(self, name: str, score: int, feedback: Dict,
                        transcript: List[Dict[str, str]]) -> Optional[asyncio.Task]:
        """Schedules send_report in the background and returns immediately"""
        if not self.configured:
            logger.debug("ReportClient: Skipping report dispatch (not configured)")
            return None

        task = asyncio.create_task(self.send_report(name, score, feedback, transcript))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("ReportClient: Report dispatch cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"ReportClient: Failed to send report: {error}", exc_info=error)

    async def close(self):
        """Wait for pending reports, then close HTTP client"""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.client.aclose()
