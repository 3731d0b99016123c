"""
Baseline data seeding (roles, permissions, users).
"""
