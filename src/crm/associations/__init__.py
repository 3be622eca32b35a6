"""Association resolution between salespeople and CRM entities.

Companies, contacts, and deals reference salespeople through denormalized
``associations.salespeople`` arrays (bare uid strings or snapshot objects)
and through legacy single-owner fields. Everything that asks "does this
entity belong to this user?" goes through resolver.py, which reads the
arrays via the canonicalizer in refs.py. team.py caches the tenant's
salespeople for reference migration and the sales-team endpoint.
"""
