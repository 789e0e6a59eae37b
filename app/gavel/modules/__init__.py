"""
Committee and motion features.

Each subpackage owns its models, service functions, serializers and JSON
routes; auth, the authorization gate, audit and the DB session come from
``app.gavel``.
"""
