# backend/wsgi.py
from countflow import create_app

app = create_app()
