"""
Gunicorn configuration for production deployment.

Run with: gunicorn -c gunicorn.conf.py emmie.main:app
"""
import os
import multiprocessing

# Server Socket
bind = f"0.0.0.0:{os.getenv('PORT', '8000')}"
backlog = 2048

# Worker Processes
workers = int(os.getenv('WEB_CONCURRENCY', multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 1000
max_requests_jitter = 50

# Streamed chat turns with tool rounds and image generation run long
timeout = int(os.getenv('GUNICORN_TIMEOUT', '300'))
graceful_timeout = 30
keepalive = 5

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.getenv('LOG_LEVEL', 'info').lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process Naming
proc_name = 'emmie-chat'

# Server Mechanics
daemon = False
pidfile = None
tmp_upload_dir = None


def when_ready(server):
    server.log.info("Emmie is ready. Spawning workers")


def post_fork(server, worker):
    server.log.info(f"Worker spawned (pid: {worker.pid})")


def worker_abort(worker):
    """Called when a worker timed out, typically on a stalled provider stream."""
    worker.log.warning(f"Worker aborted (pid: {worker.pid})")
