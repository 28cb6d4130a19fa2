import multiprocessing
import os

bind = os.getenv("LEARNHUB_BIND", "127.0.0.1:8000")
workers = int(os.getenv("LEARNHUB_WORKERS", (multiprocessing.cpu_count() * 2) + 1))
worker_class = "uvicorn.workers.UvicornWorker"
wsgi_app = "learnhub.main:app"
# PDF rendering and uploads run in the task drain, so requests stay short.
timeout = 60
graceful_timeout = 30
keepalive = 5
loglevel = "info"
accesslog = "-"
errorlog = "-"
