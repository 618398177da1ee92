# backend/wsgi.py
from campuscare import create_app

app = create_app()
