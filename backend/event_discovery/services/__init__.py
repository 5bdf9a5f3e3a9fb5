"""
Services layer - core ingestion logic for the event discovery pipeline.

ingestion/ holds the pipeline:

1. Rate limiting (rate_limiter.py):
   - Fixed-delay and token-bucket throttles per source

2. Deduplication & persistence (deduplicator.py, persistence.py):
   - Staging records keyed by (source_id, external_id)
   - Promotion into discovered events
   - Append-only fetch history

3. Queue, worker & scheduler (queue.py, worker.py, scheduler.py):
   - Durable jobs with single-flight per source
   - Exponential backoff for whole-job failures
   - Recurring cron rules and the "run now" trigger
"""
