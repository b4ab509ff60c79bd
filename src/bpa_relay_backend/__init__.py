"""
BPA Relay Backend - REST API for Best Practice Assessment reports

This package provides a FastAPI-based web service that turns a firewall
tech support bundle into a Best Practice Assessment (BPA) report. It:

- Accepts bundle uploads along with the requester's email and name
- Reads the device serial, model, software version and family from the
  bundle's CLI capture
- Authenticates against the vendor's OAuth endpoint
- Submits a BPA job, uploads the bundle and polls until the job finishes
- Returns the job id and the report's download URL

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - pipeline: Per-request composition and scratch cleanup
    - job_orchestrator: BPA job state machine and bounded polling
    - auth: OAuth client-credentials exchange
    - archive: Bundle extraction and CLI info lookup
    - system_info: ``show system info`` parsing
    - configuration: Layered settings from config.yaml and the environment
    - models: Pydantic models and step outcomes
    - errors: Error taxonomy mapped to HTTP responses

Usage:
    Run the API server with:
        uvicorn bpa_relay_backend.main:app --host 0.0.0.0 --port 3000

    Or let the service pick up PORT from the environment:
        python -m bpa_relay_backend
"""
