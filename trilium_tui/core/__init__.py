"""Navigation and state engine: tree, search, retry, editor handoff."""
