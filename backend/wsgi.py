# Overview: WSGI entry point; builds the Flask app for servers and the flask CLI.

from crm import create_app

app = create_app()
