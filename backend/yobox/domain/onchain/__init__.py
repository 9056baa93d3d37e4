"""On-chain YoEvent ingestion."""
