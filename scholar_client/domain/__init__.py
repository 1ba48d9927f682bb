"""Domain models and protocols.

Contains:
- models: Message / ExchangeRequest / IngestionState and the ingestion events.
- transcript: the TranscriptStore protocol and snapshot type.
- exceptions: business error types.
"""
