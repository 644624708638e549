"""
Role-based access control feature module.

Roles bundle permissions; users hold roles and may carry per-user grant or
deny overrides. ``engine`` decides access, ``guards`` enforces it on routes,
``service`` performs the audited administrative changes.
"""
