"""
Tests Module: Unit and Integration Tests

Test Coverage:
    - Error classification and retry policy
    - Transfer window and pipelined fetch (ordering, caps, failures)
    - Multipart transfer manager
    - Codecs, configuration, metadata cache
    - S3BinaryCacheStore against an in-memory S3 fake
"""
