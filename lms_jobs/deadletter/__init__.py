"""Dead letter tracking for failures that live outside the job pipeline."""
