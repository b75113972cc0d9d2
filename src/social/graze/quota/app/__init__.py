"""
Quota Check Application Layer

This package implements the runtime around the OAuth flows: the embedded callback listener,
the orchestration of a run, output persistence and the command line entry point.

Key Components:
- config.py: Configuration management using Pydantic settings
- server.py: Embedded aiohttp listener receiving the authorization redirect
- handlers/: Request handlers for the listener routes
- orchestrator.py: Sequential processing of client applications with per-application isolation
- runner.py: Wiring of HTTP client, flows, probe and sink for one run
- sink.py: JSON output of quota snapshots
- metrics.py: Metrics abstraction (Telegraf or no-op)
- cli.py: Command line entry point

The listener exposes two routes:
- GET / reports the authorization URL of the session currently waiting
- GET /callback receives the provider's redirect and hands the code to that session
"""
