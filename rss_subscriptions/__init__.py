"""Feed subscription ingestion, ownership-checked bulk edits and batched jobs."""
