"""
Permission management feature module.

Implements role-based access control: the permission registry, the role store,
and the authorization service that computes and validates effective permissions.
"""
