# Gunicorn configuration
import os

bind = "0.0.0.0:" + os.environ.get("PORT", "5000")

# One process: payment updates are fanned out in memory, so the webhook and
# the browser's event stream must land in the same worker. Threads serve the
# long-lived SSE connections.
workers = 1
worker_class = "gthread"
threads = int(os.environ.get("GUNICORN_THREADS", "16"))
max_requests = 1000
max_requests_jitter = 50

timeout = 120
keepalive = 5
graceful_timeout = 30

loglevel = os.environ.get("LOG_LEVEL", "info").lower()
accesslog = "-"
errorlog = "-"
capture_output = True

preload_app = False
worker_tmp_dir = "/dev/shm"
