"""Run control: the run controller, event bus and auto-save task."""
