# services/notification_service.py
"""
Email notifications for candidates and the hiring team.

Sending is best effort: every method returns False instead of raising, since
a notification is always dispatched after the stage result is already stored.
"""
import asyncio
import smtplib
from email.message import EmailMessage
from enum import Enum
from typing import Optional

from config import get_settings
from models.interview import StageDefinition, StageResult
from models.session import InterviewSession
from utils.logger import get_logger

logger = get_logger("NotificationService")


class ManagementEvent(str, Enum):
    SLOT_BOOKED = "slot_booked"
    DEMO_STARTED = "demo_started"
    DEMO_FEEDBACK = "demo_feedback"


class EmailNotifier:
    def __init__(self, smtp_factory=smtplib.SMTP):
        self._smtp_factory = smtp_factory

    def _deliver(self, to_email: str, subject: str, body: str) -> bool:
        settings = get_settings()
        if not to_email:
            return False
        if not settings.smtp_host:
            logger.warning(f"SMTP not configured; dropping '{subject}' for {to_email}")
            return False
        try:
            msg = EmailMessage()
            msg["Subject"] = subject
            msg["From"] = settings.email_from
            msg["To"] = to_email
            msg.set_content(body)
            with self._smtp_factory(settings.smtp_host, settings.smtp_port, timeout=20) as server:
                if settings.smtp_use_tls:
                    server.starttls()
                if settings.smtp_username:
                    server.login(settings.smtp_username, settings.smtp_password)
                server.send_message(msg)
            logger.info(f"📧 Sent '{subject}' to {to_email}")
            return True
        except Exception as e:
            logger.error(f"❌ Failed to send '{subject}' to {to_email}: {e}", exc_info=True)
            return False

    async def send(self, to_email: str, subject: str, body: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._deliver, to_email, subject, body)

    # ------------------------------------------------------------------ #
    # Candidate mails
    # ------------------------------------------------------------------ #
    async def notify_stage(self, session: InterviewSession, stage: StageDefinition, total_stages: int) -> bool:
        """Invite the candidate to `stage`."""
        settings = get_settings()
        name = session.candidate_profile.full_name
        link = f"{settings.app_url}/mock-interview/{session.session_id}/stages/{stage.order}"
        subject = f"{stage.name} - Stage {stage.order} of {total_stages}"
        body = (
            f"Hi {name},\n\n"
            f"You're invited to the next stage of your mock interview.\n\n"
            f"Stage: {stage.name} (Stage {stage.order} of {total_stages})\n"
            f"{stage.description}\n\n"
            f"Continue here: {link}\n\n"
            f"Good luck!"
        )
        return await self.send(session.candidate_profile.email, subject, body)

    async def notify_completed(self, session: InterviewSession) -> bool:
        name = session.candidate_profile.full_name
        score = f"{session.overall_score:.0f}%" if session.overall_score is not None else "not available"
        body = (
            f"Hi {name},\n\n"
            f"Congratulations on completing every stage of your mock interview.\n\n"
            f"Overall score: {score}\n"
            f"{session.overall_feedback or ''}\n\n"
            f"Thank you for your time."
        )
        return await self.send(session.candidate_profile.email, "Mock Interview Completed", body)

    # ------------------------------------------------------------------ #
    # Management mails
    # ------------------------------------------------------------------ #
    async def notify_management(
        self,
        event: ManagementEvent,
        session: InterviewSession,
        stage: Optional[StageDefinition] = None,
        result: Optional[StageResult] = None,
    ) -> bool:
        settings = get_settings()
        if not settings.management_email:
            return False
        name = session.candidate_profile.full_name

        if event == ManagementEvent.SLOT_BOOKED:
            slot = result.booked_slot if result else None
            when = slot.slot_at.isoformat() if slot else "unknown"
            subject = f"New Mock Interview Slot Booked - {name}"
            body = (
                f"{name} booked a slot for {stage.name if stage else 'the next stage'}.\n\n"
                f"When: {when} ({slot.timezone if slot else ''})\n"
                f"Location: {(slot.location if slot else None) or '-'}\n"
                f"Role: {(slot.role if slot else None) or '-'}\n"
                f"Notes: {(slot.notes if slot else None) or '-'}"
            )
        elif event == ManagementEvent.DEMO_STARTED:
            link = f"{settings.app_url}/live/{session.session_id}?token={session.live_view_token}"
            subject = f"Live Demo Started - {name}"
            body = f"{name} has started the live teaching demo.\n\nWatch live: {link}"
        else:
            score = f"{result.score:.0f}%" if result and result.score is not None else "n/a"
            subject = f"Demo Feedback Request - {name}"
            body = (
                f"{name} has finished the demo round.\n\n"
                f"AI score: {score}\n"
                f"{(result.feedback if result else '') or ''}\n\n"
                f"Review: {settings.app_url}/mock-interview/{session.session_id}/stages/"
                f"{result.stage_order if result else ''}"
            )

        return await self.send(settings.management_email, subject, body)
