"""
Gunicorn Configuration

Production settings for the tournament engine.

    gunicorn -c deploy/gunicorn.conf.py matchday.main:app
"""
import os
import multiprocessing

# Server socket
bind = os.environ.get("BIND", "0.0.0.0:8000")
backlog = 2048

# Per-tournament locks live in process; several workers need a database
# that honors SELECT ... FOR UPDATE
workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
timeout = 120
keepalive = 5

# Logging
accesslog = os.environ.get("ACCESS_LOG", "-")
errorlog = os.environ.get("ERROR_LOG", "-")
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = "matchday"

# Server mechanics
daemon = False
pidfile = "/tmp/matchday.pid"

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190


def when_ready(server):
    server.log.info(f"matchday ready with {workers} workers on {bind}")


def worker_int(worker):
    worker.log.info(f"worker {worker.pid} interrupted")
