"""
GitHub Integration

This package provides the OAuth flows and the authenticated API probe used to measure an
application's remaining request quota.

Key Components:
- chain.py: Middleware chain around aiohttp for headers, authorization and metrics
- code_flow.py: Authorization code flow with the embedded callback listener
- device_flow.py: Device authorization flow with server-paced polling
- probe.py: Authenticated probe calls and the quota document

Both flows end with a BearerToken; neither stores or refreshes tokens, a token lives for the
processing of one application only.
"""
