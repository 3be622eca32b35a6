"""Deal logic -- valuation, health scoring, stage mapping, and pipeline roll-ups.

Everything here is a pure function (or small class) over deal documents as
fetched from ``crm_deals``: valuation.py derives revenue ranges from the
qualification staffing ramp, health.py scores momentum, stages.py maps
historical stage names onto the tenant's pipeline, pipeline.py aggregates
funnel and bubble charts, and totals.py rolls values up to companies.
"""
