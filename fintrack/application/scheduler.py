"""
Background scheduler - runs periodic ledger jobs inside the FastAPI process.

Jobs (every SCHEDULER_INTERVAL_MINUTES):
  - Recurring income posting (ProcessAllDue for every owner with due items)
  - Recurring budget renewal
"""
import logging
from datetime import date

from apscheduler.schedulers.background import BackgroundScheduler

from fintrack.config import get_settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)


def run_recurring_incomes(db, as_of: date, cache=None) -> int:
    """Process due recurring incomes of every owner. Returns posted count."""
    from fintrack.application.recurring_incomes import RecurringIncomeScheduler, owners_with_due_incomes

    posted = 0
    service = RecurringIncomeScheduler(db, cache=cache)
    for owner_id in owners_with_due_incomes(db, as_of):
        posted += service.process_all_due(owner_id, as_of).processed
    return posted


def run_budget_renewals(db, as_of: date) -> int:
    """Renew due recurring budgets of every owner. Returns renewed count."""
    from fintrack.application.budgets import BudgetTracker, owners_with_due_budgets

    renewed = 0
    tracker = BudgetTracker(db)
    for owner_id in owners_with_due_budgets(db, as_of):
        renewed += tracker.renew_all_due(owner_id, as_of).processed
    return renewed


def _run_recurring_incomes(cache=None):
    from fintrack.infrastructure.db.session import get_session_factory

    Session = get_session_factory()
    db = Session()
    try:
        posted = run_recurring_incomes(db, date.today(), cache=cache)
        if posted:
            logger.info(f"Recurring income job posted {posted} transactions")
    except Exception:
        logger.exception("Recurring income job failed")
    finally:
        db.close()


def _run_budget_renewals():
    from fintrack.infrastructure.db.session import get_session_factory

    Session = get_session_factory()
    db = Session()
    try:
        renewed = run_budget_renewals(db, date.today())
        if renewed:
            logger.info(f"Budget renewal job renewed {renewed} budgets")
    except Exception:
        logger.exception("Budget renewal job failed")
    finally:
        db.close()


def start_scheduler(cache=None):
    """Start the background scheduler with all periodic jobs."""
    interval = get_settings().SCHEDULER_INTERVAL_MINUTES

    scheduler.add_job(
        _run_recurring_incomes,
        "interval",
        minutes=interval,
        kwargs={"cache": cache},
        id="recurring_incomes",
        replace_existing=True,
    )

    scheduler.add_job(
        _run_budget_renewals,
        "interval",
        minutes=interval,
        id="budget_renewals",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(f"Background scheduler started (every {interval} min)")


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
