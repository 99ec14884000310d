"""PRD (task list) and progress log for storyloop."""
