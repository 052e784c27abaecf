"""
MediaHost Backend — API Routes Package
========================================

Route Inventory:
    - chunks.py:  POST   /api/chunk/upload        (store one chunk)
                  GET    /api/chunk/verify        (which chunks are present)
                  POST   /api/chunk/merge         (assemble, store, record)
                  DELETE /api/chunk/cleanup       (sweep expired chunks)
    - images.py:  POST   /api/images/upload       (single-shot upload)
                  POST   /api/images/batch-upload
                  GET    /api/images              (caller's files, paginated)
                  GET    /api/images/{id}
    - stats.py:   GET    /api/stats/uploads
    - health.py:  GET    /health

Routes are thin: extract fields, call a service, return its model.
"""
