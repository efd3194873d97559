# backend/wsgi.py
from tcms import create_app

app = create_app()
