"""
Risk Alert Monitor
Re-evaluates examination papers, chapters and denied attempts for workflow
anomalies and raises alerts that principals acknowledge.

This module can be used in three ways:
1. As a CLI command: `flask evaluate-risk-alerts` (for cron jobs)
2. As a background thread started by the app (ENABLE_RISK_MONITOR=1)
3. Queued after a mutation for the affected school (EVALUATE_RISKS_ON_MUTATION)
"""

import logging
import threading
import time
from collections import namedtuple
from datetime import datetime, timedelta
from typing import List, Tuple

from sqlalchemy.exc import IntegrityError

from access_control import require_permission
from activity_helpers import DENIED_PREFIX, log_activity
from chapter_models import Chapter, ChapterStatus
from config import Config
from db_single import get_session
from entity_helpers import load_for_update, parse_enum
from examination_models import Blueprint, ExamPaper, PaperWorkflowState
from models import ActivityLog, Tenant
from risk_alert_models import RiskAlert, RiskAlertType, RiskSeverity, RiskAlertStatus, SEVERITY_ORDER
from workflow_errors import AlreadyResolved

logger = logging.getLogger(__name__)

RiskFinding = namedtuple('RiskFinding', [
    'alert_type', 'severity', 'entity_type', 'entity_id', 'entity_name', 'title', 'description'
])

REVIEW_STATES = (PaperWorkflowState.PENDING_HOD, PaperWorkflowState.PENDING_PRINCIPAL)


# ===== RULES =====

def _approval_delay_findings(papers, now, approval_sla_hours, review_sla_hours):
    findings = []
    committee_cutoff = now - timedelta(hours=approval_sla_hours)
    review_cutoff = now - timedelta(hours=review_sla_hours)

    for paper in papers:
        if (paper.workflow_state == PaperWorkflowState.SENT_TO_COMMITTEE
                and paper.sent_to_committee_at and paper.sent_to_committee_at < committee_cutoff):
            findings.append(RiskFinding(
                RiskAlertType.APPROVAL_DELAY, RiskSeverity.HIGH, 'test', paper.id, paper.title,
                'Paper waiting on examination committee',
                f"'{paper.title}' has been with the committee since "
                f"{paper.sent_to_committee_at:%Y-%m-%d %H:%M} (SLA {approval_sla_hours}h)",
            ))
        elif (paper.workflow_state in REVIEW_STATES
                and paper.submitted_at and paper.submitted_at < review_cutoff):
            findings.append(RiskFinding(
                RiskAlertType.APPROVAL_DELAY, RiskSeverity.MEDIUM, 'test', paper.id, paper.title,
                'Paper review overdue',
                f"'{paper.title}' is '{paper.workflow_state.value}' since "
                f"{paper.submitted_at:%Y-%m-%d %H:%M} (SLA {review_sla_hours}h)",
            ))
    return findings


def _paper_leak_findings(papers):
    return [
        RiskFinding(
            RiskAlertType.PAPER_LEAK_RISK, RiskSeverity.CRITICAL, 'test', paper.id, paper.title,
            'Printing-ready paper is not confidential',
            f"'{paper.title}' is marked printing ready without confidentiality protection",
        )
        for paper in papers
        if paper.printing_ready and not paper.is_confidential
    ]


def _blueprint_findings(papers, blueprints):
    findings = []
    for paper in papers:
        blueprint = blueprints.get(paper.blueprint_id)
        if blueprint is None:
            continue
        problems = []
        if paper.total_marks != blueprint.total_marks:
            problems.append(f"paper carries {paper.total_marks} marks, blueprint specifies {blueprint.total_marks}")
        if blueprint.sections and blueprint.section_marks != blueprint.total_marks:
            problems.append(f"blueprint sections add up to {blueprint.section_marks} of {blueprint.total_marks} marks")
        if problems:
            findings.append(RiskFinding(
                RiskAlertType.BLUEPRINT_VIOLATION, RiskSeverity.LOW, 'test', paper.id, paper.title,
                'Paper does not match its blueprint',
                f"'{paper.title}': " + '; '.join(problems),
            ))
    return findings


def _missing_deadline_findings(chapters, now):
    return [
        RiskFinding(
            RiskAlertType.MISSING_DEADLINE, RiskSeverity.MEDIUM, 'chapter', chapter.id, chapter.name,
            'Chapter deadline passed',
            f"'{chapter.name}' ({chapter.subject}, grade {chapter.grade}) is still unlocked after its "
            f"deadline {chapter.deadline:%Y-%m-%d %H:%M}",
        )
        for chapter in chapters
        if chapter.status == ChapterStatus.UNLOCKED and chapter.deadline and chapter.deadline < now
    ]


def _unauthorized_access_findings(denials, threshold, window_minutes):
    per_user = {}
    for log in denials:
        per_user.setdefault(log.user_id, []).append(log)

    findings = []
    for user_id, logs in per_user.items():
        if len(logs) < threshold:
            continue
        latest = max(logs, key=lambda log: (log.created_at, log.id))
        actions = sorted({log.action[len(DENIED_PREFIX):] for log in logs})
        name = latest.user_name or f"user {user_id}"
        findings.append(RiskFinding(
            RiskAlertType.UNAUTHORIZED_ACCESS, RiskSeverity.HIGH, 'user', user_id, name,
            'Repeated unauthorized attempts',
            f"{name} ({latest.user_role}) was denied {len(logs)} times in the last "
            f"{window_minutes} minutes: {', '.join(actions)}",
        ))
    return findings


def risk_settings(config=None):
    """Rule thresholds from a Flask config mapping, defaulting to Config"""
    config = config or {}
    return {
        'approval_sla_hours': config.get('RISK_APPROVAL_SLA_HOURS', Config.RISK_APPROVAL_SLA_HOURS),
        'review_sla_hours': config.get('RISK_REVIEW_SLA_HOURS', Config.RISK_REVIEW_SLA_HOURS),
        'denial_threshold': config.get('RISK_DENIAL_THRESHOLD', Config.RISK_DENIAL_THRESHOLD),
        'denial_window_minutes': config.get('RISK_DENIAL_WINDOW_MINUTES', Config.RISK_DENIAL_WINDOW_MINUTES),
    }


def collect_findings(session, tenant_id, now=None, approval_sla_hours=None, review_sla_hours=None,
                     denial_threshold=None, denial_window_minutes=None):
    """Run every rule against the school's current papers, chapters and recent denials"""
    now = now or datetime.utcnow()
    if approval_sla_hours is None:
        approval_sla_hours = Config.RISK_APPROVAL_SLA_HOURS
    if review_sla_hours is None:
        review_sla_hours = Config.RISK_REVIEW_SLA_HOURS
    if denial_threshold is None:
        denial_threshold = Config.RISK_DENIAL_THRESHOLD
    if denial_window_minutes is None:
        denial_window_minutes = Config.RISK_DENIAL_WINDOW_MINUTES

    papers = session.query(ExamPaper).filter(ExamPaper.tenant_id == tenant_id).all()
    chapters = session.query(Chapter).filter(
        Chapter.tenant_id == tenant_id,
        Chapter.status == ChapterStatus.UNLOCKED
    ).all()
    blueprints = {
        b.id: b for b in session.query(Blueprint).filter(Blueprint.tenant_id == tenant_id).all()
    }
    denials = session.query(ActivityLog).filter(
        ActivityLog.tenant_id == tenant_id,
        ActivityLog.action.like(f"{DENIED_PREFIX}%"),
        ActivityLog.user_id.isnot(None),
        ActivityLog.created_at > now - timedelta(minutes=denial_window_minutes),
        ActivityLog.created_at <= now
    ).all()

    findings = []
    findings.extend(_approval_delay_findings(papers, now, approval_sla_hours, review_sla_hours))
    findings.extend(_paper_leak_findings(papers))
    findings.extend(_blueprint_findings(papers, blueprints))
    findings.extend(_missing_deadline_findings(chapters, now))
    findings.extend(_unauthorized_access_findings(denials, denial_threshold, denial_window_minutes))
    return findings


def evaluate_tenant(session, tenant_id, now=None, approval_sla_hours=None, review_sla_hours=None,
                    denial_threshold=None, denial_window_minutes=None):
    """
    Raise an alert for every finding that has no active alert yet.

    Existing active alerts for the same (type, entity) are left untouched, so
    running this twice on unchanged state creates nothing the second time.
    The caller commits.

    Returns:
        List of newly created RiskAlert rows
    """
    now = now or datetime.utcnow()
    findings = collect_findings(session, tenant_id, now, approval_sla_hours, review_sla_hours,
                                denial_threshold, denial_window_minutes)

    active_keys = {
        key for (key,) in session.query(RiskAlert.active_key).filter(
            RiskAlert.tenant_id == tenant_id,
            RiskAlert.status == RiskAlertStatus.ACTIVE
        ).all()
    }

    created = []
    for finding in findings:
        key = RiskAlert.make_active_key(finding.alert_type, finding.entity_type, finding.entity_id)
        if key in active_keys:
            continue
        alert = RiskAlert(
            tenant_id=tenant_id,
            alert_type=finding.alert_type,
            severity=finding.severity,
            title=finding.title,
            description=finding.description,
            entity_type=finding.entity_type,
            entity_id=finding.entity_id,
            entity_name=finding.entity_name,
            status=RiskAlertStatus.ACTIVE,
            active_key=key,
            created_at=now,
        )
        session.add(alert)
        active_keys.add(key)
        created.append(alert)

    session.flush()
    if created:
        logger.info(f"Raised {len(created)} risk alerts for tenant {tenant_id}")
    return created


def evaluate_tenant_risks(tenant_id, now=None, settings=None) -> int:
    """
    Evaluate one school in its own session; returns the number of new alerts

    Args:
        settings: thresholds as returned by risk_settings(); Config defaults when omitted
    """
    session = get_session()
    try:
        created = evaluate_tenant(session, tenant_id, now, **(settings or {}))
        session.commit()
        return len(created)
    except IntegrityError:
        # Another evaluation raised the same alerts first
        session.rollback()
        logger.warning(f"Concurrent risk evaluation for tenant {tenant_id}; skipped")
        return 0
    except Exception as e:
        session.rollback()
        logger.error(f"Error evaluating risks for tenant {tenant_id}: {e}")
        raise
    finally:
        session.close()


def evaluate_all_tenants(now=None, settings=None) -> Tuple[int, int, List[str]]:
    """
    Evaluate every active school.

    Returns:
        Tuple of (tenants_evaluated, alerts_created, list_of_errors)
    """
    session = get_session()
    errors = []
    try:
        tenant_ids = [t.id for t in session.query(Tenant).filter_by(is_active=True).all()]
    finally:
        session.close()

    evaluated = 0
    total_created = 0
    for tenant_id in tenant_ids:
        try:
            total_created += evaluate_tenant_risks(tenant_id, now, settings)
            evaluated += 1
        except Exception as e:
            errors.append(f"Tenant {tenant_id}: {e}")

    logger.info(f"Risk evaluation: {evaluated} schools, {total_created} new alerts")
    return evaluated, total_created, errors


# ===== ACKNOWLEDGEMENT =====

def list_risk_alerts(session, tenant_id, status=None):
    """Alerts of a school, most severe and newest first"""
    query = session.query(RiskAlert).filter(RiskAlert.tenant_id == tenant_id)
    if status:
        query = query.filter(RiskAlert.status == parse_enum(RiskAlertStatus, status, 'status'))
    alerts = query.order_by(RiskAlert.created_at.desc(), RiskAlert.id.desc()).all()
    return sorted(alerts, key=lambda a: SEVERITY_ORDER[a.severity])


def acknowledge_alert(session, actor, alert_id, expected_version=None, now=None):
    """active -> resolved, stamping who resolved it and when"""
    require_permission(actor, 'risk_alert.acknowledge')
    alert = load_for_update(session, RiskAlert, 'risk_alert', alert_id, actor.tenant_id, expected_version)

    if alert.status == RiskAlertStatus.RESOLVED:
        raise AlreadyResolved(
            f"Risk alert {alert.id} was resolved at {alert.resolved_at.isoformat() if alert.resolved_at else 'an earlier time'}"
        )

    previous = alert.status
    alert.status = RiskAlertStatus.RESOLVED
    alert.resolved_at = now or datetime.utcnow()
    alert.resolved_by = actor.id
    alert.active_key = None
    session.flush()
    log_activity(session, actor, 'risk_alert.acknowledge', 'risk_alert', alert.id, previous, alert.status)
    return alert


# ===== ON-MUTATION EVALUATION =====

def queue_tenant_evaluation(tenant_id, settings=None):
    """Re-evaluate one school on a short-lived thread without blocking the request"""
    def run():
        try:
            evaluate_tenant_risks(tenant_id, settings=settings)
        except Exception as e:
            logger.error(f"Queued risk evaluation failed for tenant {tenant_id}: {e}")

    thread = threading.Thread(target=run, name=f"risk-eval-{tenant_id}", daemon=True)
    thread.start()
    return thread


# ===== BACKGROUND MONITOR =====

_monitor_thread = None
_monitor_running = False


def start_background_monitor(interval_seconds: int = 300, settings=None):
    """
    Start a background thread that re-evaluates every school periodically.

    Args:
        interval_seconds: How often to evaluate (default: 300)
        settings: rule thresholds as returned by risk_settings()
    """
    global _monitor_thread, _monitor_running

    if _monitor_running:
        logger.warning("Risk monitor is already running")
        return

    _monitor_running = True

    def monitor_loop():
        global _monitor_running
        logger.info(f"Risk monitor started (evaluating every {interval_seconds}s)")

        while _monitor_running:
            try:
                _, created, errors = evaluate_all_tenants(settings=settings)
                if created > 0:
                    logger.info(f"Risk monitor: raised {created} alerts")
                for error in errors:
                    logger.error(f"Risk monitor error: {error}")
            except Exception as e:
                logger.error(f"Risk monitor loop error: {e}")

            # Sleep in small increments to allow graceful shutdown
            for _ in range(interval_seconds):
                if not _monitor_running:
                    break
                time.sleep(1)

        logger.info("Risk monitor stopped")

    _monitor_thread = threading.Thread(target=monitor_loop, name="risk-monitor", daemon=True)
    _monitor_thread.start()


def stop_background_monitor():
    """Stop the background monitor."""
    global _monitor_running
    _monitor_running = False
    logger.info("Stopping risk monitor...")


def is_monitor_running() -> bool:
    return _monitor_running
