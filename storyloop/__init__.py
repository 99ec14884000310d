"""storyloop: run an AI coding assistant through a checklist of user stories."""

__version__ = "0.1.0"
