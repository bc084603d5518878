"""
API Gateway Service package for the CRM platform.

The gateway fronts tenant requests to the CRM API, enforcing:
- Rate limiting: fixed windows per tenant and endpoint
- Quotas: daily and monthly request budgets
- Security: anomaly scoring, IP whitelisting and an audit sink
- Analytics: per-tenant request, status and latency counters

Structure:
- app.main: FastAPI app, operator routes and middleware wiring.
- app.gateway: the per-request pipeline.
- app.store: key-value backends (Redis, in-memory).
- app.tenancy, app.ratelimit, app.quota, app.security, app.analytics:
  the individual checks and recorders.
"""
