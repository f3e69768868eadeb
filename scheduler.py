import logging
import threading
import time
from datetime import date, datetime
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from batching import BatchReport, run_in_batches
from config import Settings, get_settings
from database import SessionFactory, SessionLocal, session_scope
from errors import NotFoundError
from notifications import Notifier, build_daily_summary
from periods import local_today, previous_week
from retention import RetentionEngine, cleanup_all
from services import aggregator_for
from stores import ExpenseStore, UserStore

logger = logging.getLogger(__name__)


class SchedulerManager:
    """Named cron jobs whose bodies double as manual triggers."""

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        today: Optional[date] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory or SessionLocal
        self.notifier = notifier or Notifier()
        self.sleep = sleep
        self.today = today
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)
        self.jobs: dict[str, Callable[[], dict[str, Any]]] = {
            "daily_summary": self.send_daily_summaries,
            "weekly_report": self.send_weekly_reports,
            "data_cleanup": self.perform_data_cleanup,
        }
        self._running: dict[str, int] = {}
        self._last_runs: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _today(self) -> date:
        return self.today or local_today()

    def _triggers(self) -> dict[str, CronTrigger]:
        s = self.settings
        return {
            "daily_summary": CronTrigger(hour=s.daily_summary_hour, minute=0, timezone=s.timezone),
            "weekly_report": CronTrigger(
                day_of_week=s.weekly_report_day,
                hour=s.weekly_report_hour,
                minute=0,
                timezone=s.timezone,
            ),
            "data_cleanup": CronTrigger(
                day=s.cleanup_day, hour=s.cleanup_hour, minute=0, timezone=s.timezone
            ),
        }

    def _batched(self, owner_ids: list[int], worker: Callable[[int], str], label: str) -> BatchReport:
        return run_in_batches(
            owner_ids,
            worker,
            batch_size=self.settings.owner_batch_size,
            max_workers=self.settings.owner_batch_concurrency,
            delay_secs=self.settings.owner_batch_delay_secs,
            sleep=self.sleep,
            label=label,
        )

    @staticmethod
    def _tally(report: BatchReport) -> dict[str, Any]:
        results: dict[str, Any] = {"sent": 0, "skipped": 0, "failed": 0, "errors": []}
        for _owner, outcome in report.succeeded:
            results[outcome] += 1
        results["failed"] += len(report.errors)
        results["errors"] = [
            {"owner": error["item"], "error": error["error"]} for error in report.errors
        ]
        return results

    def send_daily_summaries(self) -> dict[str, Any]:
        day = self._today()
        with session_scope(self.session_factory) as session:
            owner_ids = UserStore(session).ids_with_daily_summary()

        def _send(owner: int) -> str:
            with session_scope(self.session_factory) as session:
                user = UserStore(session).get(owner)
                if user is None:
                    raise NotFoundError("User not found")
                summary = build_daily_summary(ExpenseStore(session), owner, day)
                if summary.expense_count == 0:
                    return "skipped"
                return "sent" if self.notifier.send_daily_summary(user, summary) else "failed"

        results = self._tally(self._batched(owner_ids, _send, "daily_summary"))
        logger.info(
            f"daily_summary: day={day} owners={len(owner_ids)} sent={results['sent']} "
            f"skipped={results['skipped']} failed={results['failed']}"
        )
        return results

    def send_weekly_reports(self) -> dict[str, Any]:
        window = previous_week(self._today())
        with session_scope(self.session_factory) as session:
            owner_ids = UserStore(session).ids_with_weekly_report()

        def _send(owner: int) -> str:
            with session_scope(self.session_factory) as session:
                user = UserStore(session).get(owner)
                if user is None:
                    raise NotFoundError("User not found")
                analysis = aggregator_for(session).generate(owner, window.start)
                if analysis["total_expenses"] == 0:
                    return "skipped"
                return "sent" if self.notifier.send_weekly_report(user, analysis) else "failed"

        results = self._tally(self._batched(owner_ids, _send, "weekly_report"))
        results["week_start_date"] = window.start.isoformat()
        logger.info(
            f"weekly_report: week={window.start} owners={len(owner_ids)} "
            f"sent={results['sent']} skipped={results['skipped']} failed={results['failed']}"
        )
        return results

    def perform_data_cleanup(self) -> dict[str, Any]:
        result = cleanup_all(
            self.session_factory, settings=self.settings, today=self.today, sleep=self.sleep
        )
        if result.errors:
            logger.error(f"data_cleanup_errors: count={len(result.errors)} errors={result.errors}")
        return result.to_dict()

    def _run_job(self, name: str, source: str = "manual") -> dict[str, Any]:
        job = self.jobs.get(name)
        if job is None:
            raise NotFoundError(f"Unknown job: {name}")
        logger.info(f"scheduler_run: job={name} source={source}")
        with self._lock:
            self._running[name] = self._running.get(name, 0) + 1
        started = datetime.utcnow()
        record: dict[str, Any] = {"source": source, "started_at": started.isoformat()}
        try:
            result = job()
        except Exception as exc:
            record.update(ok=False, error=str(exc))
            logger.exception(f"scheduler_run_failed: job={name} source={source}")
            raise
        else:
            record.update(ok=True, summary=result)
            return result
        finally:
            record["finished_at"] = datetime.utcnow().isoformat()
            with self._lock:
                self._running[name] -= 1
                self._last_runs[name] = record

    def trigger(self, name: str) -> dict[str, Any]:
        return self._run_job(name, "manual")

    def trigger_daily_summary(self) -> dict[str, Any]:
        return self.trigger("daily_summary")

    def trigger_weekly_report(self) -> dict[str, Any]:
        return self.trigger("weekly_report")

    def trigger_data_cleanup(self) -> dict[str, Any]:
        return self.trigger("data_cleanup")

    def trigger_user_cleanup(self, owner: int, months: Optional[int] = None) -> dict[str, Any]:
        logger.info(f"scheduler_run: job=user_cleanup source=manual owner={owner}")
        with session_scope(self.session_factory) as session:
            users = UserStore(session)
            user = users.get(owner)
            if user is None:
                raise NotFoundError("User not found")
            if months is None:
                months = user.retention_months or self.settings.default_retention_months
            engine = RetentionEngine.for_session(
                session, self.settings, today=self.today, sleep=self.sleep
            )
            result = engine.cleanup(owner, months)
            users.mark_cleaned(owner, result.timestamp)
            return result.to_dict()

    def status(self) -> dict[str, Any]:
        jobs: dict[str, Any] = {}
        with self._lock:
            for name in self.jobs:
                handle = self.scheduler.get_job(name)
                next_run = getattr(handle, "next_run_time", None) if handle else None
                jobs[name] = {
                    "scheduled": handle is not None and self.scheduler.running,
                    "running": self._running.get(name, 0) > 0,
                    "next_run_time": next_run.isoformat() if next_run else None,
                    "last_run": self._last_runs.get(name),
                }
        return {"initialized": self.scheduler.running, "jobs": jobs}

    def start(self) -> None:
        if self.scheduler.running:
            return
        for name, trigger in self._triggers().items():
            self.scheduler.add_job(
                self._run_job,
                trigger,
                args=[name, "cron"],
                id=name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=3600,
            )
        self.scheduler.start()
        logger.info(
            f"Scheduler started: daily {self.settings.daily_summary_hour:02d}:00, "
            f"weekly {self.settings.weekly_report_day} {self.settings.weekly_report_hour:02d}:00, "
            f"cleanup day {self.settings.cleanup_day} {self.settings.cleanup_hour:02d}:00"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
