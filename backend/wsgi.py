# Overview: WSGI entry point; FLASK_APP target and production server import.

from inventory_engine import create_app

app = create_app()
