"""Interactive terminal UI: state, keys, controller, rendering, loop."""
