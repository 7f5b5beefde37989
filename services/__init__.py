"""
FlowGate Services

- account_pool: provider accounts, selection and failover execution
- flow: upstream transport, model routing and operation adapters
- generation: caller-facing operations, status resolution and job watching
- reconciliation: refund of credits for jobs that never complete
- api: HTTP surface
"""
