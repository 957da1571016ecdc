# Overview: WSGI entry point used by `flask` CLI and production servers.

from opsdesk import create_app

app = create_app()
