"""
CardSync Pro Backend — Services Layer
======================================

What:  Business logic between routes (HTTP) and the database.
How:   Every service is constructed explicitly by `cardsync.container` and
       receives its collaborators through __init__; nothing here is a
       module-level singleton.

Service Inventory:
    - extractor: heuristic text → ContactInfo (pure function)
    - ContactExtractor (abstract) / GeminiService: image → ContactInfo
    - StorageService: attachment validation and blob storage
    - AuthService: ID token and session verification
    - ProfileService: profiles, plans, billing references
    - ContactService: quota-gated create/delete, update, list
    - BillingService: Stripe checkout and webhooks
    - ExportService: CSV / XLSX rendering
"""
