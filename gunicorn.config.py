import os

# gunicorn -c gunicorn.config.py wsgi:app
wsgi_app = "wsgi:app"

worker_class = "gevent"
workers = int(os.getenv("WEB_CONCURRENCY", 4))
worker_connections = int(os.getenv("WORKER_CONNECTIONS", 1000))
bind = "0.0.0.0:{}".format(os.getenv("PORT", "10000"))

# POST /api/admin/distribution/<period> walks every depositor in one request
timeout = int(os.getenv("GUNICORN_TIMEOUT", 120))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", 30))
max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", 0))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", 0))

loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")
accesslog = "-"
errorlog = "-"


def shared_otp_store_configured(worker_count):
    return worker_count <= 1 or bool(os.getenv("OTP_REDIS_URL"))


def on_starting(server):
    worker_count = server.cfg.workers
    if not shared_otp_store_configured(worker_count):
        server.log.warning(
            f"{worker_count} workers share no OTP store: set OTP_REDIS_URL so a code "
            f"issued by one worker can be confirmed on another"
        )


def post_fork(server, worker):
    server.log.info(f"Ledger worker {worker.pid} started ({worker_class}, {worker_connections} connections)")
