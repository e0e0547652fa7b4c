"""
Issue Lifecycle & Escalation Module
===================================

Bounded context owning issue status/priority state, working-time priority
recomputation, SLA classification, escalation, audit and notifications.

Layers: domain, application, infrastructure, interfaces.
"""
