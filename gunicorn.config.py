import os

wsgi_app = "wsgi:app"
worker_class = "gevent"
# a single worker keeps the in-process scheduler and its single-flight lock unique
workers = int(os.getenv("WEB_CONCURRENCY", "1"))
worker_connections = 1000
timeout = 120
bind = "0.0.0.0:{}".format(os.getenv("PORT", "10000"))

loglevel = "info"
accesslog = "-"
errorlog = "-"
