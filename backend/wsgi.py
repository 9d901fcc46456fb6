# backend/wsgi.py
from hydroflow import create_app

app = create_app()
