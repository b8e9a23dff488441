"""Run ARQ worker. Usage: python -m credit_ledger.worker.run_worker"""

from arq import run_worker
from arq.cron import cron
from credit_ledger.worker.tasks import cleanup_expired_reservations, get_redis_settings, reconcile_ledgers, shutdown, startup


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [cleanup_expired_reservations, reconcile_ledgers]
    cron_jobs = [
        cron(cleanup_expired_reservations, minute=set(range(0, 60, 5)), second=0),  # every 5 minutes
        cron(reconcile_ledgers, hour=3, minute=0, second=0),  # daily 03:00
    ]
    on_startup = startup
    on_shutdown = shutdown


def main():
    run_worker(WorkerSettings, worker_name="credit_ledger_worker")


if __name__ == "__main__":
    main()
