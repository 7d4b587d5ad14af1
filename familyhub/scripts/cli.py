"""
A simple CLI for setting up the database and running the server.
"""

import sys

import uvicorn


def run_server(host: str = "0.0.0.0", port: int = 8000):
    uvicorn.run("familyhub.api.app:app", host=host, port=port)


def setup():
    from familyhub.config.settings import Settings

    settings = Settings()
    settings.sync_manager().create_all()


def main():
    try:
        command = sys.argv[1]
    except IndexError:
        command = None

    if command == "setup":
        setup()
        print("Setup complete, tables created")
        exit(0)

    if command == "run":
        port = int(sys.argv[2]) if len(sys.argv) > 2 else 8000
        run_server(port=port)
        exit(0)

    print("Only supported commands are familyhub setup, or familyhub run {port}")
    exit(1)
