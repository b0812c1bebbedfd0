"""sitecloner: turn a live page into a generated React + Tailwind reimplementation."""

__version__ = "0.1.0"
