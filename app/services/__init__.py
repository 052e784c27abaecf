"""
MediaHost Backend — Services Layer
====================================

Service Inventory:
    - ChunkStore:      fragment files, merged artifact, expiry sweep (disk)
    - ObjectStorage:   abstract object store interface
    - S3ObjectStorage: boto3 implementation (AWS S3, Cloudflare R2, MinIO)
    - ImageService:    push → record → statistics, plus listing and detail
    - StatsService:    upload statistics rows and aggregates
    - UploadService:   chunk ingestion, completeness query, merge pipeline
    - MergeLockRegistry: one merge per fingerprint at a time

Services raise MediaHostError subclasses; the app's exception handlers turn
them into HTTP responses.
"""
