"""Allow ``python -m respawn`` (used by the login agent)."""

from respawn.cli import app

if __name__ == "__main__":
    app()
