"""
Media Scribe Domain

Turns media-bearing events into text:
- Sources (watched directories, relay subscriptions) → candidate events
- Extractor → work items, filtered through the dedup ledger
- Dispatcher + worker pool → backend transcription/description
- Sinks → JSON sidecar files or outbound relay messages
"""

__all__ = ["backends", "sources"]
