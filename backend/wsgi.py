# Overview: WSGI entrypoint; FLASK_APP target for the CLI commands.

from devicestock import create_app

app = create_app()
