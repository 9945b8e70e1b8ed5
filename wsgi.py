# wsgi.py - gunicorn entry point (gunicorn -c gunicorn.config.py wsgi:app)
import gevent.monkey
gevent.monkey.patch_all()

from app import create_app

app = create_app()
