"""
Gunicorn configuration for the member directory API.

    gunicorn main:app -c gunicorn.conf.py
"""
import multiprocessing
import os
from pathlib import Path

# LOG_DIR and the process name come from .env (via framework.config)
from framework.config import settings

LOG_DIR = Path(settings.LOG_DIR)
LOG_DIR.mkdir(parents=True, exist_ok=True)

# Server
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")
backlog = 2048

# Workers: each owns its engine and connection pool (DatabaseManager is per process)
workers = int(os.getenv("GUNICORN_WORKERS", min(multiprocessing.cpu_count(), 4)))
worker_class = "uvicorn.workers.UvicornWorker"
max_requests = 1000
max_requests_jitter = 50
timeout = 60  # pessimistic locks wait inside the request; keep below the DB lock timeout
keepalive = 5

proc_name = (settings.GUNICORN_PROC_NAME or settings.APP_NAME.lower().replace(" ", "-"))[:32]

# Logging
accesslog = str(LOG_DIR / "gunicorn_access.log")
errorlog = str(LOG_DIR / "gunicorn_error.log")
loglevel = settings.LOG_LEVEL.lower()
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(D)s trace=%({x-trace-id}o)s actor=%({x-actor}i)s'

daemon = False  # Managed by systemd
pidfile = str(LOG_DIR / "gunicorn.pid")
umask = 0o007

# Engines are created lazily per worker; preloading would share pool sockets across forks
preload_app = False
worker_tmp_dir = "/dev/shm"
graceful_timeout = 30

limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190


def when_ready(server):
    server.log.info("%s is ready. Listening on %s", settings.APP_NAME, server.address)


def post_fork(server, worker):
    server.log.info("Worker spawned (pid: %s)", worker.pid)


def on_exit(server):
    server.log.info("%s is shutting down.", settings.APP_NAME)
