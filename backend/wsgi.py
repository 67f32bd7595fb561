# backend/wsgi.py
from expedition import create_app

app = create_app()
