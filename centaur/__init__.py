"""
CentaurOS Foundry API

Multi-tenant backend for foundries: objectives and tasks, the RFQ
marketplace, retainers with weekly timesheets, and fraud controls.
"""
__version__ = "1.0.0"
