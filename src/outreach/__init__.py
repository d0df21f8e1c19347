"""Lead Outreach Pipeline.

This package runs local businesses through a staged outreach pipeline:
scrape listings, enrich from their websites, generate and deploy a demo
site, then email and call the owner, honouring opt-outs at every step.
"""

__version__ = "0.1.0"
