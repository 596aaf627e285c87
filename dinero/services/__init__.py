"""
Business Logic Services Package.

Services orchestrate the local store (``dinero.storage``) and the remote
repositories (``dinero.repositories``):

- ``sync_service``: push / pull reconciliation, last-writer-wins merge
- ``sync_worker``: background thread driving ``sync_all``
- ``auth_service``: Supabase sign-in, sign-out and refresh
- ``summary``: pure transaction aggregation

The ``create_services()`` composition root lives in
``dinero.services.container`` so that importing a single service never
pulls in the whole dependency graph.
"""
