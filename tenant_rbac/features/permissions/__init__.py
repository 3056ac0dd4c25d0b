"""
Permission evaluation feature module.

Computes effective permissions (role-based + direct grants, with a super admin
short-circuit), caches them per (user, company), and enforces required
permissions at request time.
"""
