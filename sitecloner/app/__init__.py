"""HTTP surface: submission, job lookup and the progress stream."""
