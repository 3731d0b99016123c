"""
API credential feature module.

Permission-scoped API keys whose permissions never exceed the owner's at issuance.
"""
