"""Core domain package for topicgate.

Core contains entitlement, provisioning, and the topic workflow without any
aiohttp or SQLite-specific code, keeping the business logic portable.
"""
