"""Pipeline orchestration: job state machine, submission and progress streaming."""
