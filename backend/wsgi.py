# backend/wsgi.py
from modulestore import create_app

app = create_app()
