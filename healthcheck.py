import sys

import httpx
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import text

from learnhub.config import settings
from learnhub.db import SessionLocal, engine
from learnhub.models import SideEffectTask, TaskStatus
from learnhub.scheduler import scheduler, shutdown_scheduler, start_scheduler


EXPECTED_SCHEDULER_JOBS = {
    'emi_access_sweep',
    'enrollment_expiry',
    'side_effect_drain',
}

GREEN = '\033[32m'
RED = '\033[31m'
RESET = '\033[0m'


def run_check(name, fn):
    try:
        message = fn() or ''
        suffix = f' - {message}' if message else ''
        print(f'{GREEN}PASS{RESET} {name}{suffix}')
        return True
    except Exception as exc:
        print(f'{RED}FAIL{RESET} {name} - {exc}')
        return False


def check_db_connectivity_and_write():
    with engine.begin() as conn:
        conn.execute(text('SELECT 1'))
        conn.execute(text('CREATE TABLE IF NOT EXISTS _healthcheck_probe (id INTEGER PRIMARY KEY, note TEXT)'))
        conn.execute(text("INSERT INTO _healthcheck_probe (note) VALUES ('probe')"))
        conn.execute(text("DELETE FROM _healthcheck_probe WHERE note='probe'"))
        conn.execute(text('DROP TABLE IF EXISTS _healthcheck_probe'))
    return 'connect + write ok'


def check_alembic_head():
    cfg = Config('alembic.ini')
    script = ScriptDirectory.from_config(cfg)
    heads = set(script.get_heads())
    if not heads:
        raise RuntimeError('No alembic heads found in repository')

    with engine.connect() as conn:
        current = MigrationContext.configure(conn).get_current_revision()

    if current is None:
        raise RuntimeError('No migration version in DB (run alembic upgrade head)')
    if current not in heads:
        raise RuntimeError(f'DB revision {current} is not at head {sorted(heads)}')
    return f'current={current}'


def check_auth_secret():
    if settings.auth_secret in ('', 'change-me') and settings.app_env != 'local':
        raise RuntimeError('AUTH_SECRET must be set outside local environments')
    return f'env={settings.app_env}'


def check_external_services():
    configured = {
        'pdf': settings.pdf_service_url,
        'storage': settings.storage_service_url,
        'email': settings.email_service_url,
    }
    reached = []
    for name, url in configured.items():
        if not url:
            continue
        res = httpx.get(url, timeout=8)
        if res.status_code >= 500:
            raise RuntimeError(f'{name} service returned HTTP {res.status_code}')
        reached.append(name)
    skipped = sorted(name for name, url in configured.items() if not url)
    return f'reached={reached} log_only={skipped}'


def check_scheduler_jobs_registered():
    start_scheduler()
    try:
        registered = {job.id for job in scheduler.get_jobs()}
        missing = sorted(EXPECTED_SCHEDULER_JOBS - registered)
        if missing:
            raise RuntimeError(f'Missing jobs: {missing}')
        return f'jobs={sorted(registered)}'
    finally:
        shutdown_scheduler()


def check_failed_side_effects():
    db = SessionLocal()
    try:
        failed = db.query(SideEffectTask).filter(SideEffectTask.status == TaskStatus.FAILED.value).count()
        if failed:
            raise RuntimeError(f'{failed} side-effect task(s) failed permanently')
        return 'no failed tasks'
    finally:
        db.close()


def main():
    checks = [
        ('Database connectivity and write access', check_db_connectivity_and_write),
        ('Alembic migration status at head', check_alembic_head),
        ('Auth secret configured', check_auth_secret),
        ('External services reachable', check_external_services),
        ('Scheduler jobs registered', check_scheduler_jobs_registered),
        ('Side-effect queue healthy', check_failed_side_effects),
    ]

    all_ok = True
    for name, fn in checks:
        all_ok = run_check(name, fn) and all_ok

    if not all_ok:
        sys.exit(1)
    sys.exit(0)


if __name__ == '__main__':
    main()
