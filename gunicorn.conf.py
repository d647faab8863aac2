"""
Gunicorn WSGI Server Configuration

Production settings for the portal access control service.

The application is not preloaded: with AUTHZ_AUDIT_MODE=async each worker
must start its own audit writer thread, and threads started in the master do
not survive fork.
"""

import multiprocessing
import os

# Server socket
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")
backlog = 2048

# Workers
workers = int(os.getenv("GUNICORN_WORKERS", max(2, min(8, (2 * multiprocessing.cpu_count()) + 1))))
worker_class = "sync"
max_requests = 1000
max_requests_jitter = 500
timeout = 120
keepalive = 5
graceful_timeout = 30

preload_app = False

# Logging
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")
capture_output = True

# Process management
proc_name = "portal-access-control"
daemon = False
worker_tmp_dir = "/dev/shm"

# Request limits
limit_request_line = 8192
limit_request_fields = 100
limit_request_field_size = 8192


def post_fork(server, worker):
    worker.log.info("Worker %s ready to handle requests", worker.pid)


def worker_exit(server, worker):
    # Flush the async audit buffer before the worker goes away
    from app import application
    engine = application.extensions.get("authorization_engine")
    if engine is not None:
        engine.audit_sink.close()
        worker.log.info("Worker %s flushed audit buffer", worker.pid)
