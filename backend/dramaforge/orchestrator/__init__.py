"""Pipeline orchestration: stage state machine, batch execution, cancellation."""
