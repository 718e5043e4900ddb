# backend/wsgi.py
from fiscalpos import create_app

app = create_app()
