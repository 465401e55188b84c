"""
Invitation dispatch after an exam is activated.

Activation is committed before anything here runs. Dispatch only enqueues a
background job; a broken queue is reported back but never undoes or fails
the activation.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

import redis
from email_validator import EmailNotValidError, validate_email

from examcore.core.config import settings
from examcore.jobs import queue as jobs_queue
from examcore.jobs.invitations import send_exam_invitations
from examcore.models.orm import Exam

logger = logging.getLogger(__name__)

SEPARATORS = re.compile(r"[,;\n]+")


@dataclass
class InvitationDispatch:
    recipients: List[str] = field(default_factory=list)
    invalid: List[str] = field(default_factory=list)
    queued: bool = False
    job_id: Optional[str] = None
    error: Optional[str] = None


def parse_emails(raw: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Split, trim, lower-case and de-duplicate addresses; returns (valid, invalid)."""
    valid: List[str] = []
    invalid: List[str] = []
    for chunk in raw:
        for part in SEPARATORS.split(chunk or ""):
            email = part.strip().lower()
            if not email or email in valid or email in invalid:
                continue
            try:
                validate_email(email, check_deliverability=False)
            except EmailNotValidError:
                invalid.append(email)
            else:
                valid.append(email)
    return valid, invalid


def join_url(exam: Exam) -> str:
    return f"{settings.JOIN_BASE_URL.rstrip('/')}/{exam.id}"


def dispatch_invitations(exam: Exam, emails: Iterable[str]) -> InvitationDispatch:
    recipients, invalid = parse_emails(emails)
    result = InvitationDispatch(recipients=recipients, invalid=invalid)
    if not recipients:
        return result
    try:
        job = jobs_queue.queue.enqueue(
            send_exam_invitations, exam.id, exam.title, join_url(exam), recipients, job_timeout=600
        )
    except redis.RedisError as exc:
        logger.error("Could not queue invitations for exam %s", exam.id, exc_info=True)
        result.error = str(exc)
        return result
    result.queued = True
    result.job_id = job.get_id()
    logger.info("Queued %d invitation(s) for exam %s (job %s)", len(recipients), exam.id, result.job_id)
    return result
