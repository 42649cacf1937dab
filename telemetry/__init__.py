"""User-activity telemetry: request recording, aggregation and retention."""
