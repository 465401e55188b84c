import logging
import smtplib
from email.message import EmailMessage
from typing import Dict, List

from rq import get_current_job

from examcore.core.config import settings

logger = logging.getLogger(__name__)


def build_message(recipient: str, exam_title: str, join_url: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = recipient
    msg["Subject"] = f"Invitation: {exam_title}"
    msg.set_content(
        f"You have been invited to take the exam \"{exam_title}\".\n\n"
        f"Open the following link to start:\n{join_url}\n"
    )
    return msg


def send_exam_invitations(exam_id: str, exam_title: str, join_url: str, emails: List[str]) -> Dict[str, List[str]]:
    """rq job: mail the join link to every recipient, one message each."""
    job = get_current_job()
    if job is not None:
        job.meta.update({"state": "running", "exam_id": exam_id, "total": len(emails)})
        job.save_meta()
    sent: List[str] = []
    failed: List[str] = []
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as smtp:
        if settings.SMTP_TLS:
            smtp.starttls()
        if settings.SMTP_USER:
            smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD.get_secret_value() if settings.SMTP_PASSWORD else "")
        for recipient in emails:
            try:
                smtp.send_message(build_message(recipient, exam_title, join_url))
                sent.append(recipient)
            except smtplib.SMTPException:
                logger.warning("Invitation for exam %s to %s failed", exam_id, recipient, exc_info=True)
                failed.append(recipient)
    logger.info("Invitations for exam %s: %d sent, %d failed", exam_id, len(sent), len(failed))
    if job is not None:
        job.meta.update({"state": "done", "sent": len(sent), "failed": len(failed)})
        job.save_meta()
    return {"sent": sent, "failed": failed}
