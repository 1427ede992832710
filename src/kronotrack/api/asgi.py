"""ASGI entrypoint for the Kronotrack tracking API."""

from kronotrack.api.app import create_app
from kronotrack.containers import build_container

app = create_app(build_container())
