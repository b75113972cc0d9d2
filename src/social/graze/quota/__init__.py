"""
Quota Check - OAuth quota probe for registered client applications

This package authenticates against an OAuth protected REST API (GitHub by default) on behalf
of one or more registered client applications, spends part of each application's request
quota, and records the resulting quota state as a list of normalized snapshots.

Key Components:
- app: Runtime layer with the embedded callback listener, orchestration, output sink and CLI
- github: Provider integration, covering both OAuth flows and the authenticated API probe
- model: Credentials, authorization sessions, tokens and quota snapshot models

Architecture Overview:
1. Authorization:
   - Authorization code flow: the operator opens an authorization URL in a browser and the
     provider redirects back to an embedded listener, which hands the code to the waiting flow
   - Device flow: the operator enters a user code on another device while the flow polls the
     token endpoint at the pace the provider dictates

2. Probing:
   - A fixed number of authenticated calls are made with the acquired token
   - The provider's quota document is fetched and normalized into snapshots

3. Recording:
   - Snapshots from every successful application are written once at the end of the run
   - Failures are isolated per application and never stop the run
"""
