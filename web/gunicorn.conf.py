import os


def cpu():
    return max(1, (os.cpu_count() or 1))


wsgi_app = "config.wsgi:application"
bind = f"0.0.0.0:{os.getenv('PORT', '8000')}"

# Worker processes
workers = min(max(2, cpu() * 2), 8)

# Threads per worker; order placement and the M-Pesa calls block on I/O
worker_class = "gthread"
threads = int(os.getenv("GTHREADS", "4"))

# The STK push call has its own timeout (MPESA_TIMEOUT_SECS); keep the worker timeout above it
timeout = int(os.getenv("GUNI_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GUNI_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNI_KEEPALIVE", "5"))

# Not preloaded: the callback executor must be created per worker, after fork
preload_app = False
max_requests = int(os.getenv("GUNI_MAX_REQUESTS", "2000"))
max_requests_jitter = int(os.getenv("GUNI_MAX_REQUESTS_JITTER", "200"))

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNI_LOGLEVEL", "info")
