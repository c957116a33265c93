# backend/wsgi.py
from cafe_pos import create_app

app = create_app()
